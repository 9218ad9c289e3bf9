"""
ledgersync CLI -- the ledger from the command line.

Each command group lives in its own module and is registered on the
main Click group here.

Entry point: ledgersync.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="ledgersync")
def main():
    """ledgersync -- offline-first ledger sync.

    Incomes, expenses and budgets kept locally and mirrored to one
    versioned JSON blob.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .setup import register_setup_commands
from .sync_cmd import register_sync_commands
from .entry import register_entry_commands
from .backup import register_backup_commands
from .daemon import register_daemon_commands

register_setup_commands(main)
register_sync_commands(main)
register_entry_commands(main)
register_backup_commands(main)
register_daemon_commands(main)
