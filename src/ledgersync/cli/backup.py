"""Backup commands: export, import, list."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from ._common import LEDGER_HOME, console, load_engine, result_line
from ..config import load_config
from ..errors import BackupValidationError

from rich.panel import Panel
from rich.table import Table


def _backup_dir(home: str) -> Path:
    home_path = Path(home).expanduser()
    config = load_config(home_path)
    return (config.backup_dir or home_path / "backups").expanduser()


def register_backup_commands(main: click.Group) -> None:
    """Register the backup command group."""

    @main.group()
    def backup():
        """Backup and restore -- the whole ledger as one JSON file.

        Exports are readable by the web app's import as well.
        """

    @backup.command("export")
    @click.option("--home", default=LEDGER_HOME, type=click.Path(), help="ledgersync home directory.")
    @click.option("--output", "-o", default=None, type=click.Path(), help="Output directory.")
    def backup_export(home: str, output: str):
        """Write a backup of the local cache.

        Examples:

            ledgersync backup export

            ledgersync backup export -o /mnt/usb/ledger
        """
        from ..backup import write_backup

        engine = load_engine(home)
        out_dir = Path(output).expanduser() if output else _backup_dir(home)
        path = write_backup(engine, out_dir)
        counts = engine.describe()["counts"]

        console.print(Panel(
            f"[bold green]Backup written[/]\n"
            f"Incomes: {counts['receitas']}  Expenses: {counts['despesas']}\n"
            f"Path: [cyan]{path}[/]",
            title="Backup Complete",
            border_style="green",
        ))

    @backup.command("import")
    @click.argument("backup_file", type=click.Path())
    @click.option("--home", default=LEDGER_HOME, type=click.Path(), help="ledgersync home directory.")
    @click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
    def backup_import(backup_file: str, home: str, yes: bool):
        """Replace the whole ledger with a backup file and push it.

        Examples:

            ledgersync backup import ledger-backup-2024-03-02.json
        """
        from ..backup import read_backup

        try:
            data = read_backup(backup_file)
        except FileNotFoundError as exc:
            console.print(f"[red]{exc}[/]")
            sys.exit(1)

        if not yes:
            click.confirm("This replaces every local dataset. Continue?", abort=True)

        engine = load_engine(home)
        try:
            ok = engine.import_backup(data)
        except BackupValidationError as exc:
            console.print(f"[red]{exc}[/]")
            sys.exit(1)

        console.print(result_line(ok, engine))

    @backup.command("list")
    @click.option("--home", default=LEDGER_HOME, type=click.Path(), help="ledgersync home directory.")
    def backup_list(home: str):
        """List backup files, newest first."""
        from ..backup import list_backups

        backups = list_backups(_backup_dir(home))
        if not backups:
            console.print("[dim]No backups found.[/]")
            return

        table = Table(title="Ledger Backups")
        table.add_column("File", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Modified")
        for b in backups:
            size_kb = b["size"] / 1024
            table.add_row(b["filename"], f"{size_kb:.1f} KB", b["created"][:19])
        console.print(table)
