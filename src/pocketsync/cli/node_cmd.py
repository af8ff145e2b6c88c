"""
Node commands: status, peers, rpc, switch-network, config-init.
"""

from __future__ import annotations

import json
import sys
from typing import Annotated, Any

import typer
from loguru import logger

from pocketsync.cli import app
from pocketsync.cli.common import (
    DataDirOption,
    LogLevelOption,
    run_command,
    setup_cli,
    with_service,
)
from pocketsync.models import NetworkType
from pocketsync.settings import ensure_config_file
from pocketsync.wallet.node import relaunch_hook
from pocketsync.wallet.service import AccountService


@app.command()
def status(
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show sync progress for the configured wallet."""
    settings = setup_cli(log_level, data_dir)

    async def _body(service: AccountService) -> None:
        account = await service.get_account_status()
        typer.echo(f"Network:      {service.network.value}")
        typer.echo(f"Address:      {account.address}")
        typer.echo(f"Registered:   {'yes' if account.is_registered else 'no'}")
        typer.echo(f"Tip:          {account.tip_number:,}")
        typer.echo(f"Synced to:    {account.synced_to_block:,}")
        typer.echo(f"Progress:     {account.sync_progress:.2%}")
        if account.is_synced:
            typer.echo("Status:       synced")
        else:
            typer.echo(f"Status:       syncing ({account.blocks_behind:,} blocks behind)")

    run_command(with_service(settings, _body))


@app.command()
def peers(
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """List peers connected to the light client."""
    settings = setup_cli(log_level, data_dir)

    async def _body(service: AccountService) -> None:
        nodes = await service.get_peers()
        if not nodes:
            typer.echo("No connected peers")
            return
        typer.echo(f"{len(nodes)} connected peer(s):")
        for node in nodes:
            minutes = node.connected_duration // 60_000
            typer.echo(f"  {node.node_id}  {node.version or '?':<12} {minutes} min")

    run_command(with_service(settings, _body, register=False))


@app.command()
def rpc(
    method: Annotated[str, typer.Argument(help="Light client RPC method")],
    params: Annotated[
        str | None, typer.Argument(help="JSON array of parameters, e.g. '[\"0x1\"]'")
    ] = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Call a light client RPC method and print the raw result."""
    settings = setup_cli(log_level, data_dir)

    parsed: list[Any] | None = None
    if params is not None:
        try:
            parsed = json.loads(params)
        except json.JSONDecodeError as e:
            logger.error(f"Params must be a JSON array: {e}")
            raise typer.Exit(1) from e
        if not isinstance(parsed, list):
            logger.error("Params must be a JSON array")
            raise typer.Exit(1)

    async def _body(service: AccountService) -> None:
        result = await service.call_rpc(method, parsed)
        typer.echo(json.dumps(result, indent=2))

    run_command(with_service(settings, _body, register=False))


@app.command("switch-network")
def switch_network(
    network: Annotated[NetworkType, typer.Argument(help="Target network")],
    restart: Annotated[
        bool,
        typer.Option("--restart", help="Relaunch and show status on the new network"),
    ] = False,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Select the network to use from the next launch on."""
    settings = setup_cli(log_level, data_dir)

    hook = None
    if restart:
        argv = [sys.argv[0], "status"]
        if data_dir is not None:
            argv += ["--data-dir", str(data_dir)]
        hook = relaunch_hook(argv)

    async def _body(service: AccountService) -> None:
        previous = service.network
        await service.switch_network(network)
        if previous != network:
            typer.echo(f"Switched from {previous.value} to {network.value}")

    run_command(with_service(settings, _body, start=False, restart_hook=hook))


@app.command("config-init")
def config_init(
    data_dir: DataDirOption = None,
) -> None:
    """Create a config.toml template in the data directory."""
    setup_cli(None, data_dir)
    path = ensure_config_file(data_dir)
    typer.echo(f"Config file: {path}")
