"""
Shared CLI plumbing: logging, settings, and running a command against a
started account service.
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from loguru import logger

from pocketsync.backends.rpc import LightClientRpcBackend
from pocketsync.errors import BroadcastError, EngineError
from pocketsync.paths import get_preferences_path
from pocketsync.preferences import JsonPreferenceStore
from pocketsync.settings import PocketSyncSettings, get_settings, reset_settings
from pocketsync.wallet.node import RestartHook
from pocketsync.wallet.service import AccountService
from pocketsync.wallet.signer import WatchOnlySigner

T = TypeVar("T")

DataDirOption = Annotated[
    Path | None,
    typer.Option(
        "--data-dir",
        envvar="POCKETSYNC_DATA_DIR",
        help="Data directory (default: ~/.pocketsync or $POCKETSYNC_DATA_DIR)",
    ),
]
LogLevelOption = Annotated[
    str | None,
    typer.Option("--log-level", "-l", help="Log level (default: from config, else INFO)"),
]


def setup_logging(level: str = "INFO") -> None:
    """
    Configure loguru logging with consistent format.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(log_level: str | None = None, data_dir: Path | None = None) -> PocketSyncSettings:
    """
    Common CLI setup: reset settings cache, configure logging, return settings.

    Log level priority: CLI argument > settings (env/config) > default "INFO"
    """
    if data_dir is not None:
        # The config file is looked up in the data dir, so export it first
        os.environ["POCKETSYNC_DATA_DIR"] = str(data_dir)
    reset_settings()
    settings = get_settings()

    effective_log_level = log_level if log_level is not None else settings.logging.level
    setup_logging(effective_log_level)

    return settings


def build_service(
    settings: PocketSyncSettings, restart_hook: RestartHook | None = None
) -> AccountService:
    """Create an account service wired to the configured light client."""
    signer = WatchOnlySigner.from_settings(settings.wallet)
    preferences = JsonPreferenceStore(get_preferences_path(settings.get_data_dir()))
    backend = LightClientRpcBackend(
        rpc_url=settings.light_client.rpc_url,
        binary=settings.light_client.binary,
        timeout=settings.light_client.rpc_timeout,
    )
    return AccountService(backend, preferences, signer, settings, restart_hook=restart_hook)


async def with_service(
    settings: PocketSyncSettings,
    body: Callable[[AccountService], Awaitable[T]],
    *,
    start: bool = True,
    register: bool = True,
    restart_hook: RestartHook | None = None,
) -> T:
    """
    Run ``body`` against a service, starting the light client and registering
    the wallet first unless told otherwise. The service is always closed.
    """
    service = build_service(settings, restart_hook)
    try:
        if start:
            await service.start()
        if start and register:
            await service.register_account()
        return await body(service)
    finally:
        await service.close()


def run_command(coro: Awaitable[T]) -> T:
    """
    Run a command coroutine, turning engine errors into exit code 1.
    """
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except BroadcastError as e:
        logger.error(e.user_message)
        logger.debug(f"Light client said: {e.raw_message}")
        raise typer.Exit(1) from e
    except EngineError as e:
        logger.error(f"{e.message} ({e.kind})")
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        typer.echo("\nInterrupted")
        raise typer.Exit(130) from None
