"""
Chain and engine constants shared across pocketsync modules.
"""

from __future__ import annotations

# 1 CKB = 10^8 shannons
SHANNONS_PER_CKB = 100_000_000

# Minimum capacity of a secp256k1 lock cell (61 CKB)
MIN_CELL_CAPACITY = 61 * SHANNONS_PER_CKB

# ~30 days of CKB blocks at 10-15s block time
RECENT_BLOCKS_WINDOW = 200_000

# Script block within this many blocks of the tip counts as synced
SYNC_TOLERANCE_BLOCKS = 10

# Self-heal rescans start this far before the earliest known transaction
SELF_HEAL_LOOKBACK_BLOCKS = 100

# Post-send rescans start this far before the current tip
POST_SEND_LOOKBACK_BLOCKS = 10

# Fixed starting heights used as a sync floor per network
MAINNET_CHECKPOINT = 18_300_000
TESTNET_CHECKPOINT = 0

CHECKPOINTS: dict[str, int] = {
    "mainnet": MAINNET_CHECKPOINT,
    "testnet": TESTNET_CHECKPOINT,
}

# secp256k1-blake160 sighash-all lock
SECP256K1_CODE_HASH = "0x9bd7e06f3ecf4be0f2fcd2188b23f1b9fcc88e5d4b65a8637b17723bbda3cce8"

# Default page size for indexer queries
DEFAULT_PAGE_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50

# Node bring-up
NODE_INIT_MAX_ATTEMPTS = 3
NODE_INIT_RETRY_DELAYS: tuple[float, ...] = (2.0, 4.0, 8.0)

# Transaction tracking
TX_POLL_INTERVAL = 3.0
TX_MAX_POLL_ATTEMPTS = 120
REQUIRED_CONFIRMATIONS = 3
UNKNOWN_CONFIRM_THRESHOLD = 20
UNKNOWN_TIMEOUT_THRESHOLD = 10
BALANCE_POLL_INTERVAL = 3.0
BALANCE_POLL_ATTEMPTS = 30
POST_SEND_RESCAN_DELAY = 5.0


def checkpoint_for(network: str) -> int:
    """Return the checkpoint height for a network name (0 if none is known)."""
    return CHECKPOINTS.get(network.lower(), 0)
