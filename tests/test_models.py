"""Tests for the ledger data models and helpers."""

from __future__ import annotations

from ledgersync.models import (
    DatasetKind,
    IdGenerator,
    LedgerCache,
    LedgerEntry,
    QuickEntry,
    expense_from_quick_entry,
    merge_fields,
    period_of,
    utc_now_iso,
)


class TestDatasetKind:
    """Tests for dataset name resolution."""

    def test_parse_wire_and_member_names(self):
        assert DatasetKind.parse("despesas") is DatasetKind.EXPENSES
        assert DatasetKind.parse("EXPENSES") is DatasetKind.EXPENSES
        assert DatasetKind.parse("quick-entries") is DatasetKind.QUICK_ENTRIES
        assert DatasetKind.parse(DatasetKind.BUDGETS) is DatasetKind.BUDGETS

    def test_parse_unknown(self):
        assert DatasetKind.parse("nonexistent") is None

    def test_list_and_mapping_datasets(self):
        assert DatasetKind.INCOMES.empty() == []
        assert DatasetKind.PRIOR_BALANCES.empty() == {}
        assert not DatasetKind.BUDGETS.is_list


class TestIdGenerator:
    """Tests for time-derived ids."""

    def test_ids_unique_when_clock_stalls(self):
        gen = IdGenerator(clock=lambda: 1700000000.0)
        ids = [gen.next_id() for _ in range(1000)]
        assert len(set(ids)) == 1000
        assert ids == sorted(ids)
        assert ids[0] == 1700000000000

    def test_clock_going_backwards(self):
        ticks = iter([10.0, 5.0])
        gen = IdGenerator(clock=lambda: next(ticks))
        assert gen.next_id() == 10000
        assert gen.next_id() == 10001


class TestHelpers:
    """Tests for module-level helpers."""

    def test_period_of_is_zero_based(self):
        assert period_of("2024-01-15") == (0, 2024)
        assert period_of("2024-12-31T23:00:00Z") == (11, 2024)

    def test_period_of_garbage(self):
        assert period_of("") == (None, None)
        assert period_of("yesterday") == (None, None)

    def test_merge_incoming_wins(self):
        base = {"valor": 10, "pago": False}
        merged = merge_fields(base, {"pago": True, "extra": 1})
        assert merged == {"valor": 10, "pago": True, "extra": 1}
        assert base == {"valor": 10, "pago": False}

    def test_utc_timestamp_format(self):
        stamp = utc_now_iso()
        assert stamp.endswith("Z")
        assert len(stamp) == len("2024-03-01T10:00:00.000Z")


class TestEntries:
    """Tests for LedgerEntry and QuickEntry."""

    def test_entry_record_derives_period(self):
        entry = LedgerEntry(description="Aluguel", amount=1200, due_date="2024-03-01")
        record = entry.to_record()
        assert record["descricao"] == "Aluguel"
        assert (record["mes"], record["ano"]) == (2, 2024)
        assert entry.month is None

    def test_entry_keeps_unknown_fields(self):
        entry = LedgerEntry.model_validate({"descricao": "x", "parcela": "1/3"})
        assert entry.to_record()["parcela"] == "1/3"

    def test_explicit_period_is_kept(self):
        entry = LedgerEntry(due_date="2024-03-01", month=5, year=2023)
        record = entry.to_record()
        assert (record["mes"], record["ano"]) == (5, 2023)

    def test_quick_entry_wire_names(self):
        record = QuickEntry(description="Cafe", amount=4.5, entry_date="2024-03-02").to_record()
        assert record == {"descricao": "Cafe", "valor": 4.5, "categoria": "", "data": "2024-03-02"}

    def test_expense_from_quick_entry(self):
        expense = expense_from_quick_entry({
            "id": 42, "descricao": "Cafe", "valor": 4.5, "categoria": "alimentacao",
            "data": "2024-03-02", "timestamp": "2024-03-02T08:00:00.000Z",
        })
        assert expense == {
            "id": 42,
            "descricao": "Cafe",
            "valor": 4.5,
            "categoria": "alimentacao",
            "dataVencimento": "2024-03-02",
            "dataPagamento": "2024-03-02",
            "pago": True,
            "mes": 2,
            "ano": 2024,
            "timestamp": "2024-03-02T08:00:00.000Z",
            "origem": "mobile",
        }


class TestLedgerCache:
    """Tests for the cache document."""

    def test_defaults(self):
        cache = LedgerCache()
        assert cache.last_sync == "0"
        assert cache.to_blob() == {
            "receitas": [],
            "despesas": [],
            "orcamentos": {},
            "saldosAnteriores": {},
            "gastosRapidos": [],
            "lastSync": "0",
        }

    def test_get_set_by_kind(self):
        cache = LedgerCache()
        cache.set(DatasetKind.BUDGETS, {"lazer": 200})
        assert cache.get(DatasetKind.BUDGETS) == {"lazer": 200}
        assert cache.budgets == {"lazer": 200}
