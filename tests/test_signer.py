"""Tests for the watch-only signer."""

from __future__ import annotations

import pytest
from _pocketsync_test_helpers import TEST_LOCK_ARGS, TEST_LOCK_SCRIPT

from pocketsync.models import NetworkType
from pocketsync.settings import WalletSettings
from pocketsync.wallet.signer import SignerError, WatchOnlySigner


def test_from_settings() -> None:
    signer = WatchOnlySigner.from_settings(WalletSettings(lock_args=TEST_LOCK_ARGS))
    assert signer.get_lock_script().matches(TEST_LOCK_SCRIPT)


def test_requires_lock_args() -> None:
    with pytest.raises(SignerError, match="lock_args"):
        WatchOnlySigner.from_settings(WalletSettings())


def test_rejects_bad_hash_type() -> None:
    with pytest.raises(SignerError, match="Invalid lock script"):
        WatchOnlySigner.from_settings(WalletSettings(lock_args=TEST_LOCK_ARGS, lock_hash_type="bogus"))


def test_address_fallback_uses_network_prefix() -> None:
    signer = WatchOnlySigner(TEST_LOCK_SCRIPT)
    assert signer.derive_address(NetworkType.TESTNET) == f"ckt:{TEST_LOCK_ARGS}"
    assert WatchOnlySigner(TEST_LOCK_SCRIPT, "ckb1qxyz").derive_address(NetworkType.TESTNET) == "ckb1qxyz"


def test_cannot_sign() -> None:
    with pytest.raises(SignerError):
        WatchOnlySigner(TEST_LOCK_SCRIPT).sign(b"message")
