"""
Pytest configuration and fixtures for pocketsync tests.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from _pocketsync_test_helpers import FakeLightClient

from pocketsync.settings import reset_settings


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point the data dir at a temp directory so no real config is read."""
    data_dir = tmp_path / "pocketsync"
    monkeypatch.setenv("POCKETSYNC_DATA_DIR", str(data_dir))
    monkeypatch.delenv("POCKETSYNC_CONFIG_FILE", raising=False)
    reset_settings()
    yield data_dir
    reset_settings()


@pytest.fixture
def fake_client() -> FakeLightClient:
    return FakeLightClient()
