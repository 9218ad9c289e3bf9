"""Daemon command: keep pulling in the foreground."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import click

from ._common import LEDGER_HOME, console, load_engine


def register_daemon_commands(main: click.Group) -> None:
    """Register the daemon command group."""

    @main.group()
    def daemon():
        """Background sync -- pull on a timer until stopped."""

    @daemon.command("start")
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    @click.option("--interval", default=None, type=int, help="Seconds between pulls (default: from config).")
    def daemon_start(home: str, interval: Optional[int]):
        """Run the sync scheduler in the foreground.

        Send SIGUSR1 to pull immediately. SIGINT/SIGTERM stop it and
        flush the local cache.
        """
        from ..scheduler import SyncScheduler, setup_file_logging

        home_path = Path(home).expanduser()
        engine = load_engine(home)
        every = interval or engine.config.pull_interval_seconds
        log_file = setup_file_logging(home_path)
        scheduler = SyncScheduler(engine, interval=every)

        console.print(f"\n  [green]Starting scheduler[/] every [cyan]{every}s[/]")
        console.print(f"  Log: {log_file}")
        console.print(f"  PID: {os.getpid()}")
        console.print("  [dim]Running in foreground (Ctrl+C to stop)[/]\n")
        scheduler.run_forever()
