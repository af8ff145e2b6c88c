"""
Sync commands: register, resync, reset-sync.
"""

from __future__ import annotations

from typing import Annotated

import typer

from pocketsync.cli import app
from pocketsync.cli.common import (
    DataDirOption,
    LogLevelOption,
    run_command,
    setup_cli,
    with_service,
)
from pocketsync.models import SyncMode
from pocketsync.wallet.service import AccountService

ModeOption = Annotated[
    SyncMode | None,
    typer.Option("--mode", "-m", help="Sync mode: new_wallet, recent, full_history, custom"),
]
HeightOption = Annotated[
    int | None,
    typer.Option("--height", min=0, help="Start block for --mode custom"),
]


def _check_custom(mode: SyncMode | None, height: int | None) -> None:
    if mode == SyncMode.CUSTOM and height is None:
        typer.echo("--mode custom requires --height", err=True)
        raise typer.Exit(1)


@app.command()
def register(
    mode: ModeOption = None,
    height: HeightOption = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Register the wallet with the light client, resuming saved progress."""
    _check_custom(mode, height)
    settings = setup_cli(log_level, data_dir)

    async def _body(service: AccountService) -> None:
        start = await service.register_account(mode, height)
        typer.echo(f"Registered on {service.network.value}, scanning from block {start:,}")

    run_command(with_service(settings, _body, register=False))


@app.command()
def resync(
    mode: ModeOption = None,
    height: HeightOption = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Discard saved progress and rescan according to the sync mode."""
    _check_custom(mode, height)
    settings = setup_cli(log_level, data_dir)
    effective_mode = mode or SyncMode.RECENT

    async def _body(service: AccountService) -> None:
        start = await service.resync_account(effective_mode, height)
        typer.echo(f"Resync ({effective_mode.value}) from block {start:,}")

    run_command(with_service(settings, _body, register=False))


@app.command("reset-sync")
def reset_sync(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Clear all saved sync state and register again in recent mode."""
    settings = setup_cli(log_level, data_dir)
    if not yes and not typer.confirm("Clear all saved sync progress?", default=False):
        typer.echo("Cancelled")
        raise typer.Exit(0)

    async def _body(service: AccountService) -> None:
        start = await service.force_reset_sync()
        typer.echo(f"Sync reset, scanning from block {start:,}")

    run_command(with_service(settings, _body, register=False))
