"""Ledger backup and restore.

A backup is a single JSON document: the five datasets under their blob
names, the sync marker, the export time and a format version.

    {
      "receitas": [...],
      "despesas": [...],
      "orcamentos": {...},
      "saldosAnteriores": {...},
      "gastosRapidos": [...],
      "lastSync": "2024-03-01T10:00:00.000Z",
      "backupDate": "2024-03-02T08:30:00.000Z",
      "version": "1.0"
    }

Incomes and expenses are mandatory on import. Every other dataset may be
missing (older exports) and defaults to empty.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import BackupValidationError
from .models import DatasetKind, LedgerCache, utc_now_iso

logger = logging.getLogger("ledgersync.backup")

BACKUP_VERSION = "1.0"
BACKUP_PREFIX = "ledger-backup-"

REQUIRED_DATASETS = (DatasetKind.INCOMES, DatasetKind.EXPENSES)


class BackupSnapshot(BaseModel):
    """Parsed backup document.

    Attributes:
        incomes: Income entries (mandatory).
        expenses: Expense entries (mandatory).
        budgets: Budget limits.
        prior_balances: Carry-over balances per period.
        quick_entries: Quick-entry log.
        backup_date: When the backup was exported.
        version: Snapshot format version.
    """

    model_config = ConfigDict(populate_by_name=True)

    incomes: list[dict[str, Any]] = Field(alias="receitas")
    expenses: list[dict[str, Any]] = Field(alias="despesas")
    budgets: dict[str, Any] = Field(default_factory=dict, alias="orcamentos")
    prior_balances: dict[str, Any] = Field(default_factory=dict, alias="saldosAnteriores")
    quick_entries: list[dict[str, Any]] = Field(default_factory=list, alias="gastosRapidos")
    backup_date: Optional[str] = Field(default=None, alias="backupDate")
    version: str = BACKUP_VERSION

    @field_validator("budgets", "prior_balances", mode="before")
    @classmethod
    def _null_mapping(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("quick_entries", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_cache(self) -> LedgerCache:
        return LedgerCache(
            incomes=self.incomes,
            expenses=self.expenses,
            budgets=self.budgets,
            prior_balances=self.prior_balances,
            quick_entries=self.quick_entries,
        )


def export_snapshot(cache: LedgerCache) -> bytes:
    """Serialize the full cache as a backup document.

    Args:
        cache: Cache to export.

    Returns:
        bytes: UTF-8 encoded, indented JSON.
    """
    payload = cache.to_blob()
    payload["backupDate"] = utc_now_iso()
    payload["version"] = BACKUP_VERSION
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def parse_snapshot(data: Union[bytes, str]) -> LedgerCache:
    """Parse and validate a backup document.

    Args:
        data: Raw backup content.

    Returns:
        LedgerCache: The restored datasets (sync marker left at default).

    Raises:
        BackupValidationError: If the content is not JSON, is not an
            object, or lacks incomes/expenses lists.
    """
    try:
        raw = json.loads(data)
    except ValueError as exc:
        raise BackupValidationError(f"Backup is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise BackupValidationError("Invalid backup file: expected a JSON object")

    missing = [kind.value for kind in REQUIRED_DATASETS if not isinstance(raw.get(kind.value), list)]
    if missing:
        raise BackupValidationError(f"Invalid backup file: missing {', '.join(missing)}")

    try:
        snapshot = BackupSnapshot.model_validate(raw)
    except ValidationError as exc:
        raise BackupValidationError(f"Invalid backup file: {exc}") from exc

    if snapshot.version != BACKUP_VERSION:
        logger.warning("Backup format %s, expected %s", snapshot.version, BACKUP_VERSION)
    return snapshot.to_cache()


def write_backup(engine: Any, output_dir: Path) -> Path:
    """Export the engine's cache to ``ledger-backup-<date>.json``.

    Args:
        engine: A SyncEngine (anything with ``export_backup()``).
        output_dir: Directory to write into. Created if missing.

    Returns:
        Path: The written file. Same-day exports overwrite each other.
    """
    out_dir = Path(output_dir).expanduser()
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / f"{BACKUP_PREFIX}{date.today().isoformat()}.json"
    target.write_bytes(engine.export_backup())
    logger.info("Backup written: %s", target)
    return target


def read_backup(path: Union[str, Path]) -> bytes:
    """Read a backup file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    source = Path(path).expanduser()
    if not source.exists():
        raise FileNotFoundError(f"Backup not found: {source}")
    return source.read_bytes()


def list_backups(backup_dir: Path) -> list[dict[str, Any]]:
    """List backup files, newest first.

    Args:
        backup_dir: Directory to scan.

    Returns:
        list[dict]: filepath, filename, size and modification time.
    """
    search_dir = Path(backup_dir).expanduser()
    if not search_dir.exists():
        return []

    backups = []
    for f in sorted(search_dir.glob(f"{BACKUP_PREFIX}*.json"), reverse=True):
        stat = f.stat()
        backups.append({
            "filepath": str(f),
            "filename": f.name,
            "size": stat.st_size,
            "created": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        })
    return backups
