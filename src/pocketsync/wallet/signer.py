"""
Signer seam.

Key derivation, address encoding and signing happen outside the sync engine.
The engine only needs the address to display, the lock script to track, and
(for callers that build transactions) a way to sign.
"""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from pocketsync.backends.models import Script
from pocketsync.errors import EngineError
from pocketsync.models import NetworkType
from pocketsync.settings import WalletSettings


class SignerError(EngineError):
    """The signer cannot produce what was asked of it."""

    kind = "signer"


class Signer(Protocol):
    def derive_address(self, network: NetworkType) -> str: ...

    def get_lock_script(self) -> Script: ...

    def sign(self, message: bytes) -> bytes: ...


class WatchOnlySigner:
    """
    Signer for a configured address and lock script without key material.

    Enough for syncing, balances and relaying transactions signed elsewhere.
    """

    def __init__(self, lock_script: Script, address: str = "") -> None:
        self.lock_script = lock_script
        self.address = address

    @classmethod
    def from_settings(cls, wallet: WalletSettings) -> WatchOnlySigner:
        if not wallet.lock_args:
            raise SignerError("No wallet configured: set wallet.lock_args in config.toml")
        try:
            script = Script(
                code_hash=wallet.lock_code_hash,
                hash_type=wallet.lock_hash_type,  # type: ignore[arg-type]
                args=wallet.lock_args,
            )
        except ValueError as e:
            raise SignerError(f"Invalid lock script in wallet settings: {e}") from e
        return cls(script, wallet.address)

    def derive_address(self, network: NetworkType) -> str:
        if self.address:
            return self.address
        # No encoder here; show the lock args with the network prefix instead
        logger.debug(f"No address configured, using lock args for {network.value}")
        return f"{network.hrp}:{self.lock_script.args}"

    def get_lock_script(self) -> Script:
        return self.lock_script

    def sign(self, message: bytes) -> bytes:
        raise SignerError("Watch-only wallet cannot sign transactions")


__all__ = ["Signer", "SignerError", "WatchOnlySigner"]
