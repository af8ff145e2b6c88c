"""
Transaction commands: send, tx-status.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import pydantic
import typer
from loguru import logger

from pocketsync.backends.models import Transaction
from pocketsync.cli import app
from pocketsync.cli.common import (
    DataDirOption,
    LogLevelOption,
    run_command,
    setup_cli,
    with_service,
)
from pocketsync.models import TrackerSnapshot
from pocketsync.wallet.service import AccountService
from pocketsync.wallet.tracker import TransactionStatusTracker


def load_transaction(path: Path) -> Transaction:
    """Read a signed transaction in light client JSON form."""
    try:
        data = json.loads(path.read_text())
    except OSError as e:
        logger.error(f"Cannot read {path}: {e}")
        raise typer.Exit(1) from e
    except json.JSONDecodeError as e:
        logger.error(f"{path} is not valid JSON: {e}")
        raise typer.Exit(1) from e

    # Accept both a bare transaction and the {"transaction": {...}} envelope
    if isinstance(data, dict) and "transaction" in data:
        data = data["transaction"]
    try:
        return Transaction.model_validate(data)
    except pydantic.ValidationError as e:
        logger.error(f"{path} is not a valid transaction: {e}")
        raise typer.Exit(1) from e


def _print_snapshot(snapshot: TrackerSnapshot) -> None:
    line = f"[{snapshot.state.value}] {snapshot.status_message}"
    if snapshot.error:
        line += f" ({snapshot.error})"
    typer.echo(line)


async def _follow(tracker: TransactionStatusTracker) -> TrackerSnapshot:
    """Print tracker updates until its loops finish."""

    async def _printer() -> None:
        async for snapshot in tracker.state.subscribe():
            _print_snapshot(snapshot)

    printer = asyncio.create_task(_printer())
    try:
        return await tracker.wait()
    finally:
        printer.cancel()
        await asyncio.gather(printer, return_exceptions=True)


@app.command()
def send(
    tx_file: Annotated[
        Path, typer.Argument(exists=True, dir_okay=False, help="Signed transaction JSON file")
    ],
    track: Annotated[
        bool, typer.Option("--track", "-t", help="Follow the transaction until it confirms")
    ] = False,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Broadcast a signed transaction."""
    settings = setup_cli(log_level, data_dir)
    tx = load_transaction(tx_file)

    async def _body(service: AccountService) -> None:
        if track:
            # Baseline for detecting the balance change
            await service.refresh_balance()
        tx_hash = await service.send_transaction(tx, track=track)
        typer.echo(f"Transaction sent: {tx_hash}")

        if track:
            final = await _follow(service.tracker)
            if final.error:
                raise typer.Exit(1)
        elif service.submitter.rescan_task is not None:
            # Let the post-send rescan land before the light client connection closes
            await asyncio.gather(service.submitter.rescan_task, return_exceptions=True)

    run_command(with_service(settings, _body))


@app.command("tx-status")
def tx_status(
    tx_hash: Annotated[str, typer.Argument(help="Transaction hash (0x...)")],
    watch: Annotated[
        bool, typer.Option("--watch", "-w", help="Poll until the transaction is confirmed")
    ] = False,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the status of a transaction."""
    settings = setup_cli(log_level, data_dir)

    async def _body(service: AccountService) -> None:
        report = await service.get_transaction_status(tx_hash)
        typer.echo(f"Status:         {report.status}")
        if report.is_committed:
            typer.echo(f"Confirmations:  {report.confirmations}")
            typer.echo(f"Block hash:     {report.block_hash}")
        if report.reason:
            typer.echo(f"Reason:         {report.reason}")
        if not watch or report.status == "rejected":
            return
        if report.is_committed and report.confirmations >= service.tracker.required_confirmations:
            return

        service.track_transaction(tx_hash)
        await _follow(service.tracker)

    run_command(with_service(settings, _body, register=False))
