"""Shared utilities for all CLI command modules.

Provides the Rich console instance, status formatting helpers and the
engine loader used across every command group.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console

from .. import LEDGER_HOME
from ..models import SyncStatus
from ..sync.engine import SyncEngine, open_engine

console = Console()
logger = logging.getLogger("ledgersync.cli")


def status_icon(status: SyncStatus) -> str:
    """Map sync status to a Rich-formatted indicator.

    Args:
        status: Engine status.

    Returns:
        str: Rich markup string for the status.
    """
    return {
        SyncStatus.CONNECTED: "[bold green]CONNECTED[/]",
        SyncStatus.SYNCING: "[bold cyan]SYNCING[/]",
        SyncStatus.OFFLINE: "[bold yellow]OFFLINE[/]",
        SyncStatus.ERROR: "[bold red]ERROR[/]",
    }.get(status, "[dim]UNKNOWN[/]")


def load_engine(home: str) -> SyncEngine:
    """Open the engine for ``home`` and echo status changes to the console."""
    engine = open_engine(Path(home).expanduser())
    engine.on_status_change(
        lambda status, message: console.print(f"  {status_icon(status)} [dim]{message}[/]")
    )
    return engine


def result_line(ok: bool, engine: SyncEngine) -> str:
    """One-line outcome of a mutation."""
    if not ok:
        return "[yellow]Saved locally, remote sync failed.[/] It will be retried on the next push."
    if not engine.has_credential:
        return "[green]Saved locally[/] [dim](no write credential, local-only mode)[/]"
    return "[green]Saved and synced.[/]"
