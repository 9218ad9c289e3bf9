"""
Sync Engine -- keeps the local ledger cache and the remote blob in step.

This is the command center. It owns the in-memory cache, is the only
writer of the cache store, and runs the two protocols against the blob
store:

    pull  ->  fetch blob -> replace the datasets it carries -> persist
    push  ->  overlay change -> conditional write on the held token -> persist

Local state always advances, even when the remote write fails. Every
pull, push and mutation holds the lock for the blob path, so at most one
of them is in flight per path.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import weakref
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import BaseModel

from .. import LEDGER_HOME
from ..backup import export_snapshot, parse_snapshot
from ..config import LedgerConfig, load_config
from ..errors import ConflictError, SyncError, TransportError
from ..models import (
    DatasetKind,
    IdGenerator,
    LedgerCache,
    SyncStatus,
    expense_from_quick_entry,
    merge_fields,
    utc_now_iso,
)
from ..store import CacheStore, JsonFileStore, load_cache, save_cache
from .backends import BlobStore, create_backend

logger = logging.getLogger("ledgersync.sync.engine")

QUICK_ENTRY_LIMIT = 100

StatusHandler = Callable[[SyncStatus, str], None]
Record = Union[Mapping[str, Any], BaseModel]


class PathLock:
    """Re-entrant lock for one blob path. Weakly referenceable."""

    def __init__(self):
        self._lock = threading.RLock()

    def acquire(self, blocking: bool = True) -> bool:
        return self._lock.acquire(blocking)

    def release(self) -> None:
        self._lock.release()

    def __enter__(self) -> "PathLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


# Entries disappear once no engine holds the lock.
_path_locks: "weakref.WeakValueDictionary[str, PathLock]" = weakref.WeakValueDictionary()
_path_locks_guard = threading.Lock()


def _lock_for(key: str) -> PathLock:
    """Single-flight lock shared by every engine bound to the same blob."""
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = PathLock()
            _path_locks[key] = lock
        return lock


def _as_record(entry: Record) -> dict[str, Any]:
    if isinstance(entry, BaseModel):
        to_record = getattr(entry, "to_record", None)
        if callable(to_record):
            return to_record()
        return entry.model_dump(by_alias=True, exclude_none=True)
    return dict(entry)


def _same_id(left: Any, right: Any) -> bool:
    return left == right or str(left) == str(right)


class Subscription:
    """Handle for a registered status observer."""

    def __init__(self, engine: "SyncEngine", handler: StatusHandler):
        self._engine = engine
        self._handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        """Stop receiving status changes. Safe to call twice."""
        if self.active:
            self._engine._remove_handler(self._handler)
            self.active = False


class SyncEngine:
    """Offline-first orchestrator for one ledger blob.

    Args:
        config: ledgersync configuration.
        store: Durable cache store.
        backend: Remote blob store.
        id_generator: Source of entry identifiers.
    """

    def __init__(
        self,
        config: LedgerConfig,
        store: CacheStore,
        backend: BlobStore,
        id_generator: Optional[IdGenerator] = None,
    ):
        self.config = config
        self.remote = config.remote
        self._store = store
        self._backend = backend
        self._credential = self.remote.resolve_token()
        self._ids = id_generator or IdGenerator()
        self._lock = _lock_for(backend.lock_key(self.remote.data_file))
        self._handlers: list[StatusHandler] = []
        self._handlers_lock = threading.Lock()
        self._status = SyncStatus.OFFLINE
        self._cache = load_cache(store)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def has_credential(self) -> bool:
        return bool(self._credential)

    @property
    def backend(self) -> BlobStore:
        return self._backend

    @property
    def version_token(self) -> Optional[str]:
        """Token of the remote blob as of our last pull or write.

        Persisted with the cache, so a restarted process still detects
        writes made by others since then.
        """
        return self._cache.version_token

    def on_status_change(self, handler: StatusHandler) -> Subscription:
        """Register ``handler(status, message)`` for every status change."""
        with self._handlers_lock:
            self._handlers.append(handler)
        return Subscription(self, handler)

    def _remove_handler(self, handler: StatusHandler) -> None:
        with self._handlers_lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def _notify(self, status: SyncStatus, message: str = "") -> None:
        self._status = status
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(status, message)
            except Exception:
                logger.exception("Status handler %r failed", handler)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def data(self) -> dict[str, Any]:
        """Deep copy of the whole cache in wire format."""
        return copy.deepcopy(self._cache.to_blob())

    def dataset(self, kind: Union[DatasetKind, str]) -> Any:
        """Deep copy of one dataset."""
        resolved = DatasetKind.parse(kind)
        if resolved is None:
            raise ValueError(f"Unknown dataset: {kind}")
        return copy.deepcopy(self._cache.get(resolved))

    @property
    def last_sync(self) -> str:
        return self._cache.last_sync

    def describe(self) -> dict[str, Any]:
        """Summary of the engine for status displays."""
        return {
            "status": self._status.value,
            "backend": self._backend.name,
            "path": self.remote.data_file,
            "branch": self.remote.branch,
            "credential": self.has_credential,
            "version_token": self.version_token,
            "last_sync": self._cache.last_sync,
            "last_update": self._cache.last_update,
            "counts": {
                kind.value: len(self._cache.get(kind)) for kind in DatasetKind
            },
        }

    def check_connectivity(self) -> bool:
        """Probe the remote store."""
        return self._backend.head_check(self.remote.data_file)

    def flush(self) -> bool:
        """Persist the local cache without touching the remote."""
        with self._lock:
            return self._persist()

    def _persist(self) -> bool:
        ok = save_cache(self._store, self._cache)
        if not ok:
            logger.warning("Local cache could not be fully persisted")
        return ok

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def reconcile(self, blocking: bool = True) -> Optional[dict[str, Any]]:
        """Pull the remote blob into the local cache.

        Args:
            blocking: Wait for an in-flight sync instead of skipping.

        Returns:
            Copy of the cache after the pull (unchanged when offline),
            or None if skipped because another sync was in flight.
        """
        if not self._lock.acquire(blocking=blocking):
            logger.debug("Sync in flight, skipping pull")
            return None
        try:
            return self._reconcile_locked()
        finally:
            self._lock.release()

    def _reconcile_locked(self) -> dict[str, Any]:
        self._notify(SyncStatus.SYNCING, "Loading data...")
        path = self.remote.data_file
        try:
            if self._credential:
                result = self._backend.fetch_versioned(path)
            else:
                result = self._backend.fetch(path)
            if not result.exists:
                raise TransportError(f"{path} not found on {self._backend.name}")
            remote = json.loads(result.content or "")
            if not isinstance(remote, dict):
                raise TransportError(f"{path} is not a JSON object")
        except (SyncError, ValueError) as exc:
            logger.info("Pull failed, using local data: %s", exc)
            self._notify(SyncStatus.OFFLINE, "Using local data")
            return self.data()

        self._apply_remote(remote)
        self._cache.version_token = result.token
        self._cache.last_sync = utc_now_iso()
        self._persist()
        self._notify(SyncStatus.CONNECTED, "Data loaded")
        logger.info("Pulled %s from %s", path, self._backend.name)
        return self.data()

    def _apply_remote(self, remote: Mapping[str, Any], target: Optional[LedgerCache] = None) -> None:
        """Replace every dataset the blob carries. Absent datasets stay."""
        cache = target if target is not None else self._cache
        for kind in DatasetKind:
            if kind.value not in remote or remote[kind.value] is None:
                continue
            value = remote[kind.value]
            expected = list if kind.is_list else dict
            if not isinstance(value, expected):
                logger.warning("Remote %s is not a %s, ignored", kind.value, expected.__name__)
                continue
            cache.set(kind, copy.deepcopy(value))
        if isinstance(remote.get("lastUpdate"), str):
            cache.last_update = remote["lastUpdate"]

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def persist_and_sync(self, partial: Mapping[Union[DatasetKind, str], Any]) -> bool:
        """Apply ``partial`` (dataset -> full new value) locally and push it.

        Returns:
            True if the change reached the remote, or if running local-only.
        """
        with self._lock:
            return self._push_locked(partial)

    def push_all(self) -> bool:
        """Push the whole local cache."""
        with self._lock:
            return self._push_locked({kind: self._cache.get(kind) for kind in DatasetKind})

    def _push_locked(self, partial: Mapping[Union[DatasetKind, str], Any]) -> bool:
        """Push under the held lock.

        Raises:
            ValueError: For an unknown dataset or a value that cannot be
                written as JSON. Neither the cache nor the status changes.
        """
        update: dict[DatasetKind, Any] = {}
        for key, value in partial.items():
            kind = DatasetKind.parse(key)
            if kind is None:
                raise ValueError(f"Unknown dataset: {key}")
            try:
                json.dumps(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Dataset {kind.value} is not JSON serializable: {exc}") from exc
            update[kind] = copy.deepcopy(value)

        if not self._credential:
            logger.debug("No write credential - saving locally only")
            self._overlay(update)
            self._persist()
            return True

        self._notify(SyncStatus.SYNCING, "Saving data...")
        try:
            composed = self._write_remote(update)
        except (SyncError, TypeError, ValueError) as exc:
            logger.error("Push to %s failed: %s", self._backend.name, exc)
            self._overlay(update)
            self._persist()
            self._notify(SyncStatus.ERROR, f"Sync failed: {exc}")
            return False

        self._cache = composed
        self._persist()
        self._notify(SyncStatus.CONNECTED, "Data saved")
        return True

    def _write_remote(self, update: Mapping[DatasetKind, Any]) -> LedgerCache:
        """Conditional write of cache + update, with bounded conflict retries.

        Returns:
            The written document, carrying the new version token.
        """
        path = self.remote.data_file
        retries = max(0, self.remote.conflict_retries)
        base = self._cache
        expected = self._cache.version_token
        if expected is None:
            expected = self._backend.fetch_version_token(path)

        while True:
            composed = self._compose(base, update)
            payload = json.dumps(composed.to_blob(), indent=2, ensure_ascii=False)
            try:
                composed.version_token = self._backend.conditional_write(
                    path, payload, expected, self.remote.branch,
                )
                return composed
            except ConflictError:
                if retries <= 0:
                    raise
                retries -= 1
                logger.warning(
                    "Version conflict on %s, rebasing on remote (%d retries left)",
                    path, retries,
                )
                base, expected = self._rebase_base()

    def _rebase_base(self) -> tuple[LedgerCache, Optional[str]]:
        """Current remote blob applied over a copy of the cache, plus its token."""
        path = self.remote.data_file
        base = self._cache.model_copy(deep=True)
        result = self._backend.fetch_versioned(path)
        if result.exists:
            try:
                remote = json.loads(result.content or "")
            except ValueError as exc:
                raise TransportError(f"{path} is not valid JSON: {exc}") from exc
            if isinstance(remote, dict):
                self._apply_remote(remote, target=base)
        return base, result.token

    def _compose(self, base: LedgerCache, update: Mapping[DatasetKind, Any]) -> LedgerCache:
        composed = base.model_copy(deep=True)
        for kind, value in update.items():
            composed.set(kind, copy.deepcopy(value))
        composed.last_update = utc_now_iso()
        return composed

    def _overlay(self, update: Mapping[DatasetKind, Any]) -> None:
        for kind, value in update.items():
            self._cache.set(kind, copy.deepcopy(value))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _new_id(self, *datasets: list[dict[str, Any]]) -> int:
        taken = {str(item.get("id")) for records in datasets for item in records}
        new_id = self._ids.next_id()
        while str(new_id) in taken:
            new_id = self._ids.next_id()
        return new_id

    @staticmethod
    def _entry_kind(kind: Union[DatasetKind, str]) -> Optional[DatasetKind]:
        resolved = DatasetKind.parse(kind)
        if resolved is None or not resolved.is_list:
            return None
        return resolved

    def add_entry(self, kind: Union[DatasetKind, str], entry: Record) -> bool:
        """Append an entry to a list dataset and push it.

        An ``id`` is assigned when missing; ``timestamp`` is always stamped.

        Raises:
            ValueError: If the entry cannot be written as JSON.
        """
        resolved = self._entry_kind(kind)
        if resolved is None:
            logger.warning("Cannot add to dataset %s", kind)
            return False
        record = _as_record(entry)
        with self._lock:
            records = list(self._cache.get(resolved))
            if record.get("id") in (None, ""):
                record["id"] = self._new_id(records)
            record["timestamp"] = utc_now_iso()
            records.append(record)
            return self._push_locked({resolved: records})

    def add_income(self, entry: Record) -> bool:
        return self.add_entry(DatasetKind.INCOMES, entry)

    def add_expense(self, entry: Record) -> bool:
        return self.add_entry(DatasetKind.EXPENSES, entry)

    def update_entry(
        self,
        kind: Union[DatasetKind, str],
        entry_id: Any,
        fields: Mapping[str, Any],
    ) -> bool:
        """Merge ``fields`` into the entry with ``entry_id`` and push.

        Returns:
            False if the dataset or the entry does not exist.
        """
        resolved = self._entry_kind(kind)
        if resolved is None:
            return False
        with self._lock:
            records = list(self._cache.get(resolved))
            for index, item in enumerate(records):
                if _same_id(item.get("id"), entry_id):
                    records[index] = merge_fields(item, fields)
                    return self._push_locked({resolved: records})
        return False

    def remove_entry(self, kind: Union[DatasetKind, str], entry_id: Any) -> bool:
        """Drop the entry with ``entry_id`` and push.

        Returns:
            False if the dataset or the entry does not exist.
        """
        resolved = self._entry_kind(kind)
        if resolved is None:
            return False
        with self._lock:
            current = self._cache.get(resolved)
            records = [item for item in current if not _same_id(item.get("id"), entry_id)]
            if len(records) == len(current):
                return False
            return self._push_locked({resolved: records})

    def add_quick_entry(self, entry: Record) -> bool:
        """Log a quick entry and book the matching paid expense.

        Both datasets go out in a single conditional write.
        """
        record = _as_record(entry)
        with self._lock:
            expenses = list(self._cache.expenses)
            quick = list(self._cache.quick_entries)
            if record.get("id") in (None, ""):
                record["id"] = self._new_id(quick, expenses)
            if not record.get("timestamp"):
                record["timestamp"] = utc_now_iso()

            quick.insert(0, record)
            del quick[QUICK_ENTRY_LIMIT:]

            expense = expense_from_quick_entry(record)
            if any(_same_id(item.get("id"), expense["id"]) for item in expenses):
                expense["id"] = self._new_id(expenses)
            expenses.append(expense)

            return self._push_locked({
                DatasetKind.EXPENSES: expenses,
                DatasetKind.QUICK_ENTRIES: quick,
            })

    def set_budget(self, key: str, limit: Any) -> bool:
        """Set the budget limit for ``key`` (e.g. a period or a category)."""
        with self._lock:
            budgets = merge_fields(self._cache.budgets, {key: limit})
            return self._push_locked({DatasetKind.BUDGETS: budgets})

    def remove_budget(self, key: str) -> bool:
        with self._lock:
            if key not in self._cache.budgets:
                return False
            budgets = {k: v for k, v in self._cache.budgets.items() if k != key}
            return self._push_locked({DatasetKind.BUDGETS: budgets})

    def set_prior_balance(self, period: str, balance: float) -> bool:
        """Record the carry-over balance for ``period``."""
        with self._lock:
            balances = merge_fields(self._cache.prior_balances, {period: balance})
            return self._push_locked({DatasetKind.PRIOR_BALANCES: balances})

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def export_backup(self) -> bytes:
        """Snapshot of the full cache as portable JSON bytes."""
        with self._lock:
            return export_snapshot(self._cache)

    def import_backup(self, data: Union[bytes, str]) -> bool:
        """Replace the whole cache with a snapshot and push it.

        Raises:
            BackupValidationError: If the snapshot is malformed. Local
                state is left untouched in that case.
        """
        restored = parse_snapshot(data)
        with self._lock:
            restored.last_sync = utc_now_iso()
            restored.version_token = self._cache.version_token
            self._cache = restored
            logger.info("Backup imported, pushing restored ledger")
            return self._push_locked({kind: restored.get(kind) for kind in DatasetKind})


def open_engine(home: Optional[Path] = None) -> SyncEngine:
    """Build a SyncEngine from ``<home>/config.yaml``.

    Args:
        home: ledgersync home. Defaults to ~/.ledgersync.

    Returns:
        Engine with a JSON file cache under ``<home>/cache``.
    """
    home_path = (home or Path(LEDGER_HOME)).expanduser()
    home_path.mkdir(parents=True, exist_ok=True)
    config = load_config(home_path)
    store = JsonFileStore(home_path / "cache")
    backend = create_backend(config.remote, home_path)
    return SyncEngine(config, store, backend)
