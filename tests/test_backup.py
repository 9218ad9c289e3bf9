"""Tests for backup export, parsing and files."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ledgersync.backup import (
    export_snapshot,
    list_backups,
    parse_snapshot,
    read_backup,
    write_backup,
)
from ledgersync.errors import BackupValidationError
from ledgersync.models import LedgerCache


@pytest.fixture
def cache() -> LedgerCache:
    return LedgerCache(
        incomes=[{"id": 1, "descricao": "Salário", "valor": 5000}],
        expenses=[{"id": 2, "descricao": "Aluguel", "valor": 1200}],
        budgets={"moradia": 1500},
        last_sync="2024-03-01T10:00:00.000Z",
    )


class TestExport:
    """Tests for export_snapshot()."""

    def test_document_shape(self, cache):
        doc = json.loads(export_snapshot(cache))
        assert doc["version"] == "1.0"
        assert doc["backupDate"].endswith("Z")
        assert doc["lastSync"] == "2024-03-01T10:00:00.000Z"
        assert doc["saldosAnteriores"] == {}
        assert doc["gastosRapidos"] == []

    def test_non_ascii_kept(self, cache):
        assert "Salário".encode("utf-8") in export_snapshot(cache)

    def test_reimport_gives_same_datasets(self, cache):
        restored = parse_snapshot(export_snapshot(cache))
        assert restored.incomes == cache.incomes
        assert restored.budgets == cache.budgets


class TestParse:
    """Tests for parse_snapshot()."""

    def test_optional_datasets_default_empty(self):
        restored = parse_snapshot('{"receitas": [], "despesas": [], "orcamentos": null}')
        assert restored.budgets == {}
        assert restored.prior_balances == {}
        assert restored.quick_entries == []

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '{"receitas": []}',
        '{"receitas": {}, "despesas": []}',
        '{"receitas": [], "despesas": [], "orcamentos": [1]}',
    ])
    def test_invalid(self, raw):
        with pytest.raises(BackupValidationError):
            parse_snapshot(raw)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_snapshot("{}")


class TestFiles:
    """Tests for write/read/list of backup files."""

    def test_write_and_read(self, tmp_path: Path, cache):
        engine = type("E", (), {"export_backup": lambda self: export_snapshot(cache)})()
        path = write_backup(engine, tmp_path / "backups")

        assert path.name.startswith("ledger-backup-")
        assert path.suffix == ".json"
        assert parse_snapshot(read_backup(path)).expenses == cache.expenses

    def test_read_missing(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            read_backup(tmp_path / "nope.json")

    def test_list_newest_first(self, tmp_path: Path):
        for day in ("2024-01-01", "2024-03-01", "2024-02-01"):
            (tmp_path / f"ledger-backup-{day}.json").write_text("{}")
        (tmp_path / "notes.txt").write_text("x")

        names = [b["filename"] for b in list_backups(tmp_path)]
        assert names == [
            "ledger-backup-2024-03-01.json",
            "ledger-backup-2024-02-01.json",
            "ledger-backup-2024-01-01.json",
        ]

    def test_list_missing_dir(self, tmp_path: Path):
        assert list_backups(tmp_path / "none") == []
