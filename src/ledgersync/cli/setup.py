"""Setup and overview commands: init, status."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from ._common import LEDGER_HOME, console, load_engine, status_icon
from ..config import BackendType, LedgerConfig, RemoteConfig, load_config, save_config
from ..models import SyncStatus

from rich.panel import Panel
from rich.table import Table


def register_setup_commands(main: click.Group) -> None:
    """Register init and status on the main CLI group."""

    @main.command()
    @click.option("--home", default=LEDGER_HOME, type=click.Path(), help="ledgersync home directory.")
    @click.option("--backend", type=click.Choice([b.value for b in BackendType]), default=BackendType.GITHUB.value)
    @click.option("--owner", default="", help="Repository owner (GitHub backend).")
    @click.option("--repo", default="ledger-data", help="Repository name.")
    @click.option("--branch", default="main", help="Branch holding the blob.")
    @click.option("--data-file", default="data/gastos.json", help="Blob path inside the repository.")
    @click.option("--local-path", default=None, type=click.Path(), help="Directory for the local backend.")
    @click.option("--interval", default=30, help="Seconds between scheduled pulls.")
    def init(
        home: str,
        backend: str,
        owner: str,
        repo: str,
        branch: str,
        data_file: str,
        local_path: Optional[str],
        interval: int,
    ):
        """Write the configuration for a new ledger home.

        The write credential is read from $LEDGERSYNC_TOKEN. Without it
        every change stays local.
        """
        home_path = Path(home).expanduser()
        config = LedgerConfig(
            remote=RemoteConfig(
                backend_type=BackendType(backend),
                owner=owner,
                repo=repo,
                branch=branch,
                data_file=data_file,
                local_path=Path(local_path).expanduser() if local_path else None,
            ),
            pull_interval_seconds=interval,
        )
        config_file = save_config(home_path, config)
        console.print(f"\n  [green]Configuration written:[/] {config_file}")
        if backend == BackendType.GITHUB.value and not owner:
            console.print("  [yellow]No --owner given.[/] Edit the file before syncing.")
        console.print()

    @main.command()
    @click.option("--home", default=LEDGER_HOME, type=click.Path(), help="ledgersync home directory.")
    def status(home: str):
        """Show sync status and dataset sizes."""
        home_path = Path(home).expanduser()
        engine = load_engine(home)
        info = engine.describe()
        config = load_config(home_path)

        console.print()
        console.print(
            Panel(
                f"Backend: [cyan]{info['backend']}[/] "
                f"({config.remote.owner}/{config.remote.repo}@{info['branch']})\n"
                f"Blob: {info['path']}\n"
                f"Status: {status_icon(SyncStatus(info['status']))}\n"
                f"Credential: {'[green]yes[/]' if info['credential'] else '[yellow]none (local-only)[/]'}\n"
                f"Last Sync: {info['last_sync'] if info['last_sync'] != '0' else '[dim]never[/]'}\n"
                f"Last Update: {info['last_update'] or '[dim]unknown[/]'}",
                title="ledgersync",
                border_style="bright_blue",
            )
        )

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Dataset", style="bold")
        table.add_column("Items", justify="right")
        for name, count in info["counts"].items():
            table.add_row(name, str(count))
        console.print(table)
        console.print()
