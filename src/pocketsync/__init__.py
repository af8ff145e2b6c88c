"""
CKB light client wallet sync engine.
"""

from pocketsync.backends.base import LightClientBackend
from pocketsync.wallet.service import AccountService

__version__ = "0.4.0"

__all__ = ["AccountService", "LightClientBackend", "__version__"]
