"""
Unified settings management for pocketsync.

Uses pydantic-settings and supports:
1. TOML configuration file (~/.pocketsync/config.toml)
2. Environment variables
3. CLI arguments (via typer, passed as overrides)

Priority (highest to lowest):
1. CLI arguments
2. Environment variables
3. Config file
4. Default values

Environment Variable Naming:
    - Use uppercase with double underscore for nested settings
    - Examples: LIGHT_CLIENT__RPC_URL, TRACKER__POLL_INTERVAL
    - Maps to TOML sections: LIGHT_CLIENT__RPC_URL -> [light_client] rpc_url
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, ClassVar

from loguru import logger
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from pocketsync.constants import (
    BALANCE_POLL_ATTEMPTS,
    BALANCE_POLL_INTERVAL,
    DEFAULT_PAGE_LIMIT,
    NODE_INIT_MAX_ATTEMPTS,
    NODE_INIT_RETRY_DELAYS,
    POST_SEND_RESCAN_DELAY,
    REQUIRED_CONFIRMATIONS,
    SECP256K1_CODE_HASH,
    TX_MAX_POLL_ATTEMPTS,
    TX_POLL_INTERVAL,
    UNKNOWN_CONFIRM_THRESHOLD,
    UNKNOWN_TIMEOUT_THRESHOLD,
)
from pocketsync.models import SyncMode
from pocketsync.paths import get_default_data_dir


class LightClientSettings(BaseModel):
    """Light client process and RPC configuration."""

    rpc_url: str = Field(
        default="http://127.0.0.1:9000",
        description="ckb-light-client JSON-RPC URL",
    )
    config_path: str | None = Field(
        default=None,
        description="Light client TOML config (defaults to <data_dir>/<network>.toml)",
    )
    binary: str | None = Field(
        default=None,
        description="Path to ckb-light-client; when set the node is launched as a subprocess",
    )
    rpc_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for RPC calls",
    )
    init_max_attempts: int = Field(
        default=NODE_INIT_MAX_ATTEMPTS,
        ge=1,
        description="Attempts to bring the light client online before giving up",
    )
    init_retry_delays: list[float] = Field(
        default_factory=lambda: list(NODE_INIT_RETRY_DELAYS),
        description="Backoff delays in seconds between init attempts",
    )


class WalletSettings(BaseModel):
    """Tracked identity. Key material is never stored here."""

    address: str = Field(
        default="",
        description="Wallet address shown in balances and status output",
    )
    lock_code_hash: str = Field(
        default=SECP256K1_CODE_HASH,
        description="Lock script code hash",
    )
    lock_hash_type: str = Field(
        default="type",
        description="Lock script hash type",
    )
    lock_args: str = Field(
        default="",
        description="Lock script args (0x-prefixed blake160 of the public key)",
    )
    page_limit: int = Field(
        default=DEFAULT_PAGE_LIMIT,
        ge=1,
        le=10_000,
        description="Page size for cell and transaction queries",
    )


class SyncSettings(BaseModel):
    default_mode: SyncMode = Field(
        default=SyncMode.RECENT,
        description="Sync mode used for first registration: new_wallet, recent, full_history, custom",
    )
    custom_block_height: int | None = Field(
        default=None,
        ge=0,
        description="Start height when default_mode is custom",
    )


class TrackerSettings(BaseModel):
    """Transaction status and balance polling configuration."""

    poll_interval: float = Field(default=TX_POLL_INTERVAL, ge=0.0)
    max_poll_attempts: int = Field(default=TX_MAX_POLL_ATTEMPTS, ge=1)
    required_confirmations: int = Field(default=REQUIRED_CONFIRMATIONS, ge=1)
    unknown_confirm_threshold: int = Field(
        default=UNKNOWN_CONFIRM_THRESHOLD,
        ge=1,
        description="Consecutive unknown polls after which the tx is assumed confirmed",
    )
    unknown_timeout_threshold: int = Field(
        default=UNKNOWN_TIMEOUT_THRESHOLD,
        ge=1,
        description="Consecutive unknown polls at timeout that still count as success",
    )
    balance_poll_interval: float = Field(default=BALANCE_POLL_INTERVAL, ge=0.0)
    balance_poll_attempts: int = Field(default=BALANCE_POLL_ATTEMPTS, ge=1)
    post_send_rescan_delay: float = Field(
        default=POST_SEND_RESCAN_DELAY,
        ge=0.0,
        description="Seconds to wait after broadcast before re-registering near the tip",
    )


class LoggingSettings(BaseModel):
    level: str = Field(
        default="INFO",
        description="Log level: TRACE, DEBUG, INFO, WARNING, ERROR",
    )


class PocketSyncSettings(BaseSettings):
    """
    Main settings class.

    Loads configuration from multiple sources with the following priority:
    1. CLI arguments (passed to the constructor)
    2. Environment variables
    3. TOML config file (~/.pocketsync/config.toml)
    4. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    _config_file_path: ClassVar[Path | None] = None

    data_dir: Path | None = Field(
        default=None,
        description="Data directory (defaults to ~/.pocketsync)",
    )

    light_client: LightClientSettings = Field(default_factory=LightClientSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        toml_source = TomlConfigSettingsSource(settings_cls)
        return (
            init_settings,
            env_settings,
            toml_source,
        )

    def get_data_dir(self) -> Path:
        """Get the data directory, using default if not set."""
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            return self.data_dir
        return get_default_data_dir()


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """
    Settings source that reads from a TOML config file.

    The config file is expected at ~/.pocketsync/config.toml,
    $POCKETSYNC_DATA_DIR/config.toml, or $POCKETSYNC_CONFIG_FILE.
    """

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._config: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        config_path = get_config_path()

        if not config_path.exists():
            logger.debug(f"Config file not found at {config_path}, using defaults")
            return

        try:
            with open(config_path, "rb") as f:
                self._config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML syntax in config file {config_path}: {e}") from e
        except OSError as e:
            raise ValueError(f"Failed to read config file {config_path}: {e}") from e

        logger.info(f"Loaded config from {config_path}")

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        value = self._config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return self._config


def get_config_path() -> Path:
    """Get the path to the config file."""
    env_path = os.environ.get("POCKETSYNC_CONFIG_FILE")
    if env_path:
        return Path(env_path)
    data_dir_env = os.environ.get("POCKETSYNC_DATA_DIR")
    data_dir = Path(data_dir_env) if data_dir_env else Path.home() / ".pocketsync"
    return data_dir / "config.toml"


def generate_config_template() -> str:
    """
    Generate a config file template with all settings commented out.
    """
    lines: list[str] = [
        "# pocketsync configuration",
        "#",
        "# All settings are commented out - uncomment to override the default.",
        "#",
        "# Priority (highest to lowest):",
        "#   1. CLI arguments",
        "#   2. Environment variables (e.g. LIGHT_CLIENT__RPC_URL=http://127.0.0.1:9000)",
        "#   3. This config file",
        "#   4. Built-in defaults",
        "",
    ]

    def add_section(title: str, model_cls: type[BaseModel], prefix: str) -> None:
        lines.append(f"# {'=' * 60}")
        lines.append(f"# {title}")
        lines.append(f"# {'=' * 60}")
        lines.append(f"[{prefix}]")
        lines.append("")

        for field_name, field_info in model_cls.model_fields.items():
            if field_info.description:
                lines.append(f"# {field_info.description}")

            default = field_info.default
            if field_info.default_factory is not None:
                default = field_info.default_factory()  # type: ignore[call-arg]

            if default is None:
                lines.append(f"# {field_name} = ")
                lines.append("")
                continue
            if isinstance(default, bool):
                value_str = str(default).lower()
            elif isinstance(default, SyncMode):
                value_str = f'"{default.value}"'
            elif isinstance(default, str):
                value_str = f'"{default}"'
            else:
                value_str = str(default)

            lines.append(f"# {field_name} = {value_str}")
            lines.append("")

    add_section("Light Client Settings", LightClientSettings, "light_client")
    add_section("Wallet Settings", WalletSettings, "wallet")
    add_section("Sync Settings", SyncSettings, "sync")
    add_section("Tracker Settings", TrackerSettings, "tracker")
    add_section("Logging Settings", LoggingSettings, "logging")

    return "\n".join(lines)


def ensure_config_file(data_dir: Path | None = None) -> Path:
    """
    Ensure the config file exists, creating a template if it doesn't.

    Returns:
        Path to the config file.
    """
    if data_dir is None:
        data_dir = get_default_data_dir()

    config_path = data_dir / "config.toml"

    if not config_path.exists():
        logger.info(f"Creating config file template at {config_path}")
        data_dir.mkdir(parents=True, exist_ok=True)
        config_path.write_text(generate_config_template())

    return config_path


_settings: PocketSyncSettings | None = None


def get_settings(**overrides: Any) -> PocketSyncSettings:
    """
    Get the settings instance.

    On first call, loads settings from all sources. Subsequent calls
    return the cached instance unless reset_settings() is called.
    """
    global _settings
    if _settings is None or overrides:
        _settings = PocketSyncSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None


__all__ = [
    "PocketSyncSettings",
    "LightClientSettings",
    "WalletSettings",
    "SyncSettings",
    "TrackerSettings",
    "LoggingSettings",
    "get_settings",
    "reset_settings",
    "get_config_path",
    "generate_config_template",
    "ensure_config_file",
]
