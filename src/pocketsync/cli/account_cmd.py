"""
Account commands: balance, cells, history.
"""

from __future__ import annotations

from typing import Annotated

import typer

from pocketsync.amount import format_amount
from pocketsync.cli import app
from pocketsync.cli.common import (
    DataDirOption,
    LogLevelOption,
    run_command,
    setup_cli,
    with_service,
)
from pocketsync.constants import DEFAULT_HISTORY_LIMIT
from pocketsync.models import BalanceSnapshot
from pocketsync.wallet.service import DEFAULT_REFRESH_INTERVAL, AccountService

LimitOption = Annotated[int | None, typer.Option("--limit", "-n", min=1, help="Page size")]
CursorOption = Annotated[str | None, typer.Option("--cursor", help="Cursor from a previous page")]


def _print_balance(snapshot: BalanceSnapshot) -> None:
    typer.echo(f"{format_amount(snapshot.capacity)} at block {snapshot.as_of_block:,}")


@app.command()
def balance(
    watch: Annotated[
        bool, typer.Option("--watch", "-w", help="Keep refreshing and print every change")
    ] = False,
    interval: Annotated[
        float, typer.Option("--interval", min=1.0, help="Seconds between refreshes with --watch")
    ] = DEFAULT_REFRESH_INTERVAL,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the wallet's live balance."""
    settings = setup_cli(log_level, data_dir)

    async def _body(service: AccountService) -> None:
        _print_balance(await service.refresh_balance())
        if not watch:
            return
        service.start_auto_refresh(interval)
        async for snapshot in service.balance.subscribe():
            if snapshot is not None:
                _print_balance(snapshot)

    run_command(with_service(settings, _body))


@app.command()
def cells(
    limit: LimitOption = None,
    cursor: CursorOption = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """List live cells owned by the wallet."""
    settings = setup_cli(log_level, data_dir)

    async def _body(service: AccountService) -> None:
        page = await service.get_cells(limit, cursor)
        if not page.items:
            typer.echo("No live cells")
            return
        typer.echo(f"{'Out point':<70} {'Block':>12} {'Capacity (CKB)':>20}")
        typer.echo("-" * 104)
        for cell in page.items:
            typer.echo(
                f"{cell.out_point.tx_hash + ':' + str(cell.out_point.index):<70} "
                f"{cell.block_number:>12,} {format_amount(cell.capacity, include_unit=False):>20}"
            )
        typer.echo("-" * 104)
        typer.echo(f"{len(page.items)} cells, {format_amount(page.total_capacity)}")
        if page.next_cursor:
            typer.echo(f"Next page: --cursor {page.next_cursor}")

    run_command(with_service(settings, _body))


@app.command()
def history(
    limit: LimitOption = None,
    cursor: CursorOption = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show wallet transactions, newest first."""
    settings = setup_cli(log_level, data_dir)

    async def _body(service: AccountService) -> None:
        page = await service.get_transactions(limit or DEFAULT_HISTORY_LIMIT, cursor)
        if not page.items:
            typer.echo("No transactions found")
            return
        typer.echo(f"{'Block':>12} {'Amount':>22} {'Conf':>6}  TX hash")
        typer.echo("-" * 110)
        for record in page.items:
            typer.echo(
                f"{record.block_number:>12,} {record.formatted_amount():>22} "
                f"{record.confirmations:>6}  {record.tx_hash}"
            )
        if page.next_cursor:
            typer.echo(f"Next page: --cursor {page.next_cursor}")

    run_command(with_service(settings, _body))
