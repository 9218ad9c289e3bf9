"""Ledger commands: entry add/update/remove/list, quick, budget, balance."""

from __future__ import annotations

import sys
from datetime import date
from typing import Optional

import click
import yaml

from ._common import LEDGER_HOME, console, load_engine, result_line
from ..models import DatasetKind, LedgerEntry, QuickEntry

from rich.table import Table

KIND_CHOICES = {
    "income": DatasetKind.INCOMES,
    "expense": DatasetKind.EXPENSES,
    "quick": DatasetKind.QUICK_ENTRIES,
}


def _parse_assignments(pairs: tuple[str, ...]) -> dict:
    """Turn ``key=value`` pairs into a dict, YAML-typing the values."""
    fields = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--set")
        key, raw = pair.split("=", 1)
        try:
            fields[key.strip()] = yaml.safe_load(raw)
        except yaml.YAMLError:
            fields[key.strip()] = raw
    return fields


def register_entry_commands(main: click.Group) -> None:
    """Register ledger mutation commands."""

    @main.group()
    def entry():
        """Add, change and list incomes and expenses."""

    @entry.command("add")
    @click.argument("kind", type=click.Choice(["income", "expense"]))
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    @click.option("--description", "-d", required=True, help="Free-text description.")
    @click.option("--amount", "-a", required=True, type=float, help="Amount.")
    @click.option("--category", "-c", default="", help="Category.")
    @click.option("--due", default=None, help="Due date (YYYY-MM-DD). Defaults to today.")
    @click.option("--paid-on", default=None, help="Payment date (YYYY-MM-DD).")
    @click.option("--paid", is_flag=True, help="Mark as paid.")
    def entry_add(
        kind: str,
        home: str,
        description: str,
        amount: float,
        category: str,
        due: Optional[str],
        paid_on: Optional[str],
        paid: bool,
    ):
        """Add an income or an expense.

        Examples:

            ledgersync entry add expense -d Aluguel -a 1200 -c moradia --due 2024-03-01
        """
        engine = load_engine(home)
        record = LedgerEntry(
            description=description,
            amount=amount,
            category=category,
            due_date=due or date.today().isoformat(),
            payment_date=paid_on,
            paid=paid or bool(paid_on),
        )
        ok = engine.add_entry(KIND_CHOICES[kind], record)
        console.print(result_line(ok, engine))

    @entry.command("update")
    @click.argument("kind", type=click.Choice(sorted(KIND_CHOICES)))
    @click.argument("entry_id")
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    @click.option("--set", "assignments", multiple=True, help="Field to change, as key=value.")
    def entry_update(kind: str, entry_id: str, home: str, assignments: tuple[str, ...]):
        """Change fields of an existing entry.

        Examples:

            ledgersync entry update expense 1709251200000 --set pago=true --set valor=1250
        """
        fields = _parse_assignments(assignments)
        if not fields:
            console.print("[yellow]Nothing to change.[/] Use --set key=value.")
            sys.exit(1)

        engine = load_engine(home)
        if not any(str(item.get("id")) == entry_id for item in engine.dataset(KIND_CHOICES[kind])):
            console.print(f"[red]No {kind} with id {entry_id}.[/]")
            sys.exit(1)
        ok = engine.update_entry(KIND_CHOICES[kind], entry_id, fields)
        console.print(result_line(ok, engine))

    @entry.command("remove")
    @click.argument("kind", type=click.Choice(sorted(KIND_CHOICES)))
    @click.argument("entry_id")
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    def entry_remove(kind: str, entry_id: str, home: str):
        """Delete an entry by id."""
        engine = load_engine(home)
        if not any(str(item.get("id")) == entry_id for item in engine.dataset(KIND_CHOICES[kind])):
            console.print(f"[red]No {kind} with id {entry_id}.[/]")
            sys.exit(1)
        ok = engine.remove_entry(KIND_CHOICES[kind], entry_id)
        console.print(result_line(ok, engine))

    @entry.command("list")
    @click.argument("kind", type=click.Choice(sorted(KIND_CHOICES)))
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    @click.option("--limit", "-n", default=20, help="Show at most N entries.")
    def entry_list(kind: str, home: str, limit: int):
        """List entries from the local cache."""
        engine = load_engine(home)
        records = engine.dataset(KIND_CHOICES[kind])
        if not records:
            console.print(f"[dim]No {kind} entries.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("ID", style="dim")
        table.add_column("Description", style="bold")
        table.add_column("Amount", justify="right")
        table.add_column("Category", style="cyan")
        table.add_column("Date")
        table.add_column("Paid")
        for item in records[-limit:]:
            table.add_row(
                str(item.get("id", "")),
                str(item.get("descricao", "")),
                f"{float(item.get('valor') or 0):.2f}",
                str(item.get("categoria", "")),
                str(item.get("dataVencimento") or item.get("data") or ""),
                "yes" if item.get("pago") else "",
            )
        console.print(table)

    @main.command()
    @click.argument("description")
    @click.argument("amount", type=float)
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    @click.option("--category", "-c", default="outros", help="Category.")
    @click.option("--date", "day", default=None, help="Date (YYYY-MM-DD). Defaults to today.")
    def quick(description: str, amount: float, home: str, category: str, day: Optional[str]):
        """Log a quick expense (also booked as a paid expense).

        Examples:

            ledgersync quick "Padaria" 12.50 -c alimentacao
        """
        engine = load_engine(home)
        record = QuickEntry(
            description=description,
            amount=amount,
            category=category,
            entry_date=day or date.today().isoformat(),
        )
        ok = engine.add_quick_entry(record)
        console.print(result_line(ok, engine))

    @main.group()
    def budget():
        """Budget limits per period or category."""

    @budget.command("set")
    @click.argument("key")
    @click.argument("limit", type=float)
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    def budget_set(key: str, limit: float, home: str):
        """Set the limit for KEY."""
        engine = load_engine(home)
        console.print(result_line(engine.set_budget(key, limit), engine))

    @budget.command("remove")
    @click.argument("key")
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    def budget_remove(key: str, home: str):
        """Remove the limit for KEY."""
        engine = load_engine(home)
        if key not in engine.dataset(DatasetKind.BUDGETS):
            console.print(f"[red]No budget named {key}.[/]")
            sys.exit(1)
        console.print(result_line(engine.remove_budget(key), engine))

    @main.group()
    def balance():
        """Carry-over balances between periods."""

    @balance.command("set")
    @click.argument("period")
    @click.argument("amount", type=float)
    @click.option("--home", default=LEDGER_HOME, type=click.Path())
    def balance_set(period: str, amount: float, home: str):
        """Record the balance carried into PERIOD (e.g. 2024-03)."""
        engine = load_engine(home)
        console.print(result_line(engine.set_prior_balance(period, amount), engine))
