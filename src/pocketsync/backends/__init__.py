"""
Light client backend implementations.
"""

from pocketsync.backends.base import LightClientBackend
from pocketsync.backends.rpc import LightClientRpcBackend

__all__ = ["LightClientBackend", "LightClientRpcBackend"]
