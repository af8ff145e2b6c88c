"""
pocketsync CLI package.

Commands are organized into submodules and registered via ``@app.command()``
decorators that reference the ``app`` Typer instance defined here.
"""

from __future__ import annotations

import typer

app = typer.Typer(
    name="pocket-sync",
    help="CKB light client wallet sync",
    add_completion=False,
)


def main() -> None:
    """Entry point for the ``pocket-sync`` console script."""
    app()


# ---------------------------------------------------------------------------
# Import submodules to register their ``@app.command()`` decorated functions.
# These imports MUST come after ``app`` is defined above.
# ---------------------------------------------------------------------------
from pocketsync.cli import (  # noqa: E402, F401
    account_cmd,
    node_cmd,
    send_cmd,
    sync_cmd,
)

if __name__ == "__main__":
    main()
