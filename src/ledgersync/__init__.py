"""
ledgersync -- offline-first sync for a personal finance ledger.

Incomes, expenses, budgets, carry-over balances and the quick-entry log
live in a local cache. One JSON blob under version control is the
remote source of truth. Writes are optimistic: they only land if nobody
moved the blob since we looked.
"""

import os

__version__ = "0.1.0"

LEDGER_HOME = os.environ.get("LEDGERSYNC_HOME", "~/.ledgersync")
