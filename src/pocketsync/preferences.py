"""
Durable per-network sync preferences.

All preferences except the selected network are namespaced by network name
(``mainnet_sync_mode``, ``testnet_last_synced_block``, ...) so a mainnet resume
point can never leak into a testnet registration.

The JSON document is rewritten atomically on every change: written to a temp
file in the same directory, fsynced, then moved over the original. A write
that returns has reached the disk, which the network switch relies on since
the process is relaunched right after persisting the target network.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from pocketsync.errors import EngineError
from pocketsync.models import NetworkType, SyncMode, SyncPreference

KEY_SELECTED_NETWORK = "selected_network"
KEY_SYNC_MODE = "sync_mode"
KEY_CUSTOM_BLOCK_HEIGHT = "custom_block_height"
KEY_INITIAL_SYNC_COMPLETED = "initial_sync_completed"
KEY_LAST_SYNCED_BLOCK = "last_synced_block"

_LEGACY_KEYS = (
    KEY_SYNC_MODE,
    KEY_CUSTOM_BLOCK_HEIGHT,
    KEY_INITIAL_SYNC_COMPLETED,
    KEY_LAST_SYNCED_BLOCK,
)


class PreferenceError(EngineError):
    """Preferences could not be read or written."""

    kind = "persistence"


class PreferenceStore(Protocol):
    """Persistence port consumed by the sync engine."""

    def get_selected_network(self) -> NetworkType: ...

    def set_selected_network(self, network: NetworkType) -> None: ...

    def get_sync_mode(self, network: NetworkType | None = None) -> SyncMode: ...

    def set_sync_mode(self, mode: SyncMode, network: NetworkType | None = None) -> None: ...

    def get_custom_block_height(self, network: NetworkType | None = None) -> int | None: ...

    def set_custom_block_height(
        self, height: int | None, network: NetworkType | None = None
    ) -> None: ...

    def get_last_synced_block(self, network: NetworkType | None = None) -> int: ...

    def set_last_synced_block(self, block: int, network: NetworkType | None = None) -> None: ...

    def has_completed_initial_sync(self, network: NetworkType | None = None) -> bool: ...

    def set_initial_sync_completed(
        self, completed: bool, network: NetworkType | None = None
    ) -> None: ...

    def snapshot(self, network: NetworkType | None = None) -> SyncPreference: ...

    def clear(self) -> None: ...


class JsonPreferenceStore:
    """
    ``PreferenceStore`` backed by a single JSON file.

    Thread-safety: not thread-safe; the engine only writes from its own task.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._data: dict[str, Any] = {}
        self._load()
        self._migrate_if_needed()

    # -- IO ---------------------------------------------------------------

    def _load(self) -> None:
        if not self.path.exists():
            logger.debug(f"No preferences file at {self.path}")
            return
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise PreferenceError(f"Failed to read preferences: {e}") from e
        if not text.strip():
            return
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt preferences file {self.path}, starting fresh: {e}")
            return
        if isinstance(data, dict):
            self._data = data
        else:
            logger.warning(f"Ignoring preferences file {self.path}: not a JSON object")

    def _save(self, data: dict[str, Any]) -> None:
        """Write ``data`` to disk, then adopt it as the in-memory state."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=".preferences-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise PreferenceError(f"Failed to write preferences: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
        self._data = data

    def _set(self, key: str, value: Any) -> None:
        data = dict(self._data)
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._save(data)

    def _migrate_if_needed(self) -> None:
        """
        Move legacy un-namespaced keys to ``mainnet_*``.

        Files written before testnet support have no selected network and keep
        sync prefs at the top level; those belong to mainnet.
        """
        if KEY_SELECTED_NETWORK in self._data:
            return

        data = dict(self._data)
        migrated = []
        for key in _LEGACY_KEYS:
            if key in data:
                value = data.pop(key)
                if not (key == KEY_CUSTOM_BLOCK_HEIGHT and (value is None or value < 0)):
                    data[f"mainnet_{key}"] = value
                migrated.append(key)

        data[KEY_SELECTED_NETWORK] = NetworkType.MAINNET.value
        if migrated:
            logger.info(f"Migrated legacy preferences to mainnet: {', '.join(migrated)}")
        if self.path.exists() or migrated:
            self._save(data)
        else:
            self._data = data

    def _key(self, key: str, network: NetworkType | None) -> str:
        net = network or self.get_selected_network()
        return f"{net.value}_{key}"

    # -- Network selection (global) ----------------------------------------

    def get_selected_network(self) -> NetworkType:
        try:
            return NetworkType(self._data.get(KEY_SELECTED_NETWORK, NetworkType.MAINNET.value))
        except ValueError:
            return NetworkType.MAINNET

    def set_selected_network(self, network: NetworkType) -> None:
        self._set(KEY_SELECTED_NETWORK, network.value)
        logger.info(f"Selected network persisted: {network.value}")

    # -- Per-network -------------------------------------------------------

    def get_sync_mode(self, network: NetworkType | None = None) -> SyncMode:
        try:
            return SyncMode(self._data.get(self._key(KEY_SYNC_MODE, network), SyncMode.RECENT.value))
        except ValueError:
            return SyncMode.RECENT

    def set_sync_mode(self, mode: SyncMode, network: NetworkType | None = None) -> None:
        self._set(self._key(KEY_SYNC_MODE, network), mode.value)

    def get_custom_block_height(self, network: NetworkType | None = None) -> int | None:
        height = self._data.get(self._key(KEY_CUSTOM_BLOCK_HEIGHT, network))
        if isinstance(height, int) and height >= 0:
            return height
        return None

    def set_custom_block_height(self, height: int | None, network: NetworkType | None = None) -> None:
        self._set(self._key(KEY_CUSTOM_BLOCK_HEIGHT, network), height)

    def get_last_synced_block(self, network: NetworkType | None = None) -> int:
        block = self._data.get(self._key(KEY_LAST_SYNCED_BLOCK, network), 0)
        return block if isinstance(block, int) and block >= 0 else 0

    def set_last_synced_block(self, block: int, network: NetworkType | None = None) -> None:
        self._set(self._key(KEY_LAST_SYNCED_BLOCK, network), max(block, 0))

    def has_completed_initial_sync(self, network: NetworkType | None = None) -> bool:
        return bool(self._data.get(self._key(KEY_INITIAL_SYNC_COMPLETED, network), False))

    def set_initial_sync_completed(self, completed: bool, network: NetworkType | None = None) -> None:
        self._set(self._key(KEY_INITIAL_SYNC_COMPLETED, network), completed)

    def snapshot(self, network: NetworkType | None = None) -> SyncPreference:
        net = network or self.get_selected_network()
        return SyncPreference(
            network=net,
            mode=self.get_sync_mode(net),
            custom_block_height=self.get_custom_block_height(net),
            last_synced_block=self.get_last_synced_block(net),
            completed_initial_sync=self.has_completed_initial_sync(net),
        )

    def clear(self) -> None:
        """
        Drop all sync preferences. The selected network survives so the
        next launch stays on the same network.
        """
        selected = self.get_selected_network()
        self._save({KEY_SELECTED_NETWORK: selected.value})
        logger.info("Cleared sync preferences")


__all__ = ["PreferenceStore", "JsonPreferenceStore", "PreferenceError"]
