"""
Wallet engine: node lifecycle, sync, balances, sending and tracking.
"""

from pocketsync.wallet.balance import BalanceReconciler
from pocketsync.wallet.node import NodeLifecycleManager
from pocketsync.wallet.service import AccountService
from pocketsync.wallet.signer import Signer, WatchOnlySigner
from pocketsync.wallet.submit import TransactionSubmitter
from pocketsync.wallet.sync import SyncCoordinator, resolve_start_block
from pocketsync.wallet.tracker import TransactionStatusTracker

__all__ = [
    "AccountService",
    "BalanceReconciler",
    "NodeLifecycleManager",
    "Signer",
    "SyncCoordinator",
    "TransactionStatusTracker",
    "TransactionSubmitter",
    "WatchOnlySigner",
    "resolve_start_block",
]
