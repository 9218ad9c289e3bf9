"""Sync commands: pull, push, check."""

from __future__ import annotations

import sys

import click

from ._common import LEDGER_HOME, console, load_engine
from ..models import DatasetKind, SyncStatus


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command group."""

    @main.group()
    def sync():
        """Reconcile the local cache with the remote blob.

        Pull replaces local datasets with the remote ones. Push writes
        the whole local cache back, guarded by the blob's version token.
        """

    @sync.command("pull")
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    def sync_pull(home):
        """Fetch the remote blob into the local cache."""
        engine = load_engine(home)
        console.print("\n  Pulling remote ledger...")
        data = engine.reconcile()

        if engine.status != SyncStatus.CONNECTED:
            console.print("  [yellow]Remote unavailable, local data kept.[/]\n")
            sys.exit(1)

        counts = ", ".join(
            f"{kind.value}={len(data.get(kind.value, []))}" for kind in DatasetKind
        )
        console.print(f"  [green]done[/] [dim]{counts}[/]\n")

    @sync.command("push")
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    def sync_push(home):
        """Write the whole local cache to the remote blob."""
        engine = load_engine(home)
        if not engine.has_credential:
            console.print("[yellow]No write credential.[/] Set $LEDGERSYNC_TOKEN to push.")
            sys.exit(1)

        console.print("\n  Pushing local ledger...")
        if engine.push_all():
            console.print(f"  [green]done[/] [dim]token {engine.version_token}[/]\n")
        else:
            console.print("  [red]failed[/] [dim]local data kept; pull and retry[/]\n")
            sys.exit(1)

    @sync.command("check")
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    def sync_check(home):
        """Probe whether the remote blob is reachable."""
        engine = load_engine(home)
        if engine.check_connectivity():
            console.print(f"[green]Reachable[/] ({engine.backend.name})")
        else:
            console.print(f"[yellow]Unreachable[/] ({engine.backend.name})")
            sys.exit(1)
