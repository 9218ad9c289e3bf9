"""
Pydantic models for the ledger cache and the entries it holds.

Field aliases are the wire names used by the remote blob and by backup
snapshots (the format the existing web and mobile apps already read),
so a cache can round-trip through either without translation.
"""

from __future__ import annotations

import threading
import time
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SyncStatus(str, Enum):
    """Connectivity state of the sync engine."""

    OFFLINE = "offline"
    SYNCING = "syncing"
    CONNECTED = "connected"
    ERROR = "error"


class DatasetKind(str, Enum):
    """The five datasets a ledger cache is made of.

    Values are the top-level keys of the remote blob.
    """

    INCOMES = "receitas"
    EXPENSES = "despesas"
    BUDGETS = "orcamentos"
    PRIOR_BALANCES = "saldosAnteriores"
    QUICK_ENTRIES = "gastosRapidos"

    @property
    def field_name(self) -> str:
        """Attribute name on LedgerCache."""
        return _FIELD_NAMES[self]

    @property
    def is_list(self) -> bool:
        """True for datasets made of entries with an ``id``."""
        return self in LIST_DATASETS

    def empty(self) -> Union[list, dict]:
        """Empty container for this dataset."""
        return [] if self.is_list else {}

    @classmethod
    def parse(cls, value: Union["DatasetKind", str]) -> Optional["DatasetKind"]:
        """Resolve a wire name or member name, or None if unknown.

        Accepts ``"despesas"``, ``"EXPENSES"`` and ``"expenses"`` alike.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            pass
        try:
            return cls[str(value).upper().replace("-", "_")]
        except KeyError:
            return None


_FIELD_NAMES = {
    DatasetKind.INCOMES: "incomes",
    DatasetKind.EXPENSES: "expenses",
    DatasetKind.BUDGETS: "budgets",
    DatasetKind.PRIOR_BALANCES: "prior_balances",
    DatasetKind.QUICK_ENTRIES: "quick_entries",
}

LIST_DATASETS = frozenset({
    DatasetKind.INCOMES,
    DatasetKind.EXPENSES,
    DatasetKind.QUICK_ENTRIES,
})

SYNC_MARKER = "lastSync"
NEVER_SYNCED = "0"
VERSION_MARKER = "versionToken"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def period_of(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    """Return ``(month, year)`` for an ISO date string.

    Months are zero-based, matching the ``mes`` field of the blob format.
    Unparseable or empty input yields ``(None, None)``.
    """
    if not value:
        return None, None
    try:
        day = date.fromisoformat(str(value)[:10])
    except ValueError:
        return None, None
    return day.month - 1, day.year


def merge_fields(base: Mapping[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow field-level merge. Keys in ``incoming`` win over ``base``.

    Neither input is modified.
    """
    merged = dict(base)
    merged.update(incoming)
    return merged


class IdGenerator:
    """Time-derived identifiers, unique and increasing within a process.

    Ids are epoch milliseconds. When the clock has not moved on since the
    previous id (or went backwards) the previous id plus one is used.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            candidate = int(self._clock() * 1000)
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return candidate


class LedgerEntry(BaseModel):
    """An income or an expense.

    Unknown fields written by other clients are kept as extras so an
    entry survives a round trip untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[Union[int, str]] = None
    description: str = Field(default="", alias="descricao")
    amount: float = Field(default=0.0, alias="valor")
    category: str = Field(default="", alias="categoria")
    due_date: Optional[str] = Field(default=None, alias="dataVencimento")
    payment_date: Optional[str] = Field(default=None, alias="dataPagamento")
    paid: bool = Field(default=False, alias="pago")
    month: Optional[int] = Field(default=None, alias="mes")
    year: Optional[int] = Field(default=None, alias="ano")
    timestamp: Optional[str] = None
    origin: Optional[str] = Field(default=None, alias="origem")

    def to_record(self) -> dict[str, Any]:
        """Wire-format dict, with month/year derived from the due date when unset."""
        record = self.model_dump(by_alias=True, exclude_none=True)
        if self.month is None and self.year is None:
            month, year = period_of(self.due_date or self.payment_date)
            if year is not None:
                record["mes"], record["ano"] = month, year
        return record


class QuickEntry(BaseModel):
    """A quick expense note, usually captured on the phone."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[Union[int, str]] = None
    description: str = Field(default="", alias="descricao")
    amount: float = Field(default=0.0, alias="valor")
    category: str = Field(default="", alias="categoria")
    entry_date: Optional[str] = Field(default=None, alias="data")
    timestamp: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


QUICK_ENTRY_ORIGIN = "mobile"


def expense_from_quick_entry(quick: Mapping[str, Any]) -> dict[str, Any]:
    """Build the paid expense a quick entry stands for."""
    day = quick.get("data")
    month, year = period_of(day)
    expense = {
        "id": quick.get("id"),
        "descricao": quick.get("descricao"),
        "valor": quick.get("valor"),
        "categoria": quick.get("categoria"),
        "dataVencimento": day,
        "dataPagamento": day,
        "pago": True,
        "mes": month,
        "ano": year,
        "timestamp": quick.get("timestamp") or utc_now_iso(),
        "origem": QUICK_ENTRY_ORIGIN,
    }
    return {key: value for key, value in expense.items() if value is not None}


class LedgerCache(BaseModel):
    """Everything the ledger knows, as one document.

    This is both the in-memory cache and, dumped by alias, the remote blob.
    """

    model_config = ConfigDict(populate_by_name=True)

    incomes: list[dict[str, Any]] = Field(default_factory=list, alias="receitas")
    expenses: list[dict[str, Any]] = Field(default_factory=list, alias="despesas")
    budgets: dict[str, Any] = Field(default_factory=dict, alias="orcamentos")
    prior_balances: dict[str, Any] = Field(default_factory=dict, alias="saldosAnteriores")
    quick_entries: list[dict[str, Any]] = Field(default_factory=list, alias="gastosRapidos")
    last_sync: str = Field(default=NEVER_SYNCED, alias="lastSync")
    last_update: Optional[str] = Field(default=None, alias="lastUpdate")
    # Remote version token as of the last pull or write. Local bookkeeping,
    # never part of the blob or a backup.
    version_token: Optional[str] = Field(default=None, alias=VERSION_MARKER, exclude=True)

    def get(self, kind: DatasetKind) -> Any:
        return getattr(self, kind.field_name)

    def set(self, kind: DatasetKind, value: Any) -> None:
        setattr(self, kind.field_name, value)

    def to_blob(self) -> dict[str, Any]:
        """Wire-format dict (the remote blob / snapshot body)."""
        return self.model_dump(by_alias=True, exclude_none=True)
