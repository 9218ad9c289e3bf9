"""
Cache Store -- durable local home for each dataset.

One key per dataset, plus the sync marker and the version token the engine
holds. Loading a key that was never saved gives an empty container. Saving
never raises: a failed write is logged and reported as False so the
in-memory cache keeps moving.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Union

from .models import NEVER_SYNCED, SYNC_MARKER, VERSION_MARKER, DatasetKind, LedgerCache

logger = logging.getLogger("ledgersync.store")

StoreKey = Union[DatasetKind, str]


def _key_name(key: StoreKey) -> str:
    return key.value if isinstance(key, DatasetKind) else str(key)


def default_for(key: StoreKey) -> Any:
    """Value returned for a key that has never been saved."""
    kind = DatasetKind.parse(key)
    if kind is not None:
        return kind.empty()
    if _key_name(key) == SYNC_MARKER:
        return NEVER_SYNCED
    # VERSION_MARKER and unknown keys
    return None


class CacheStore(ABC):
    """Abstract durable key-value store for the ledger cache."""

    @abstractmethod
    def load(self, key: StoreKey) -> Any:
        """Return the stored value for ``key`` or its default."""

    @abstractmethod
    def save(self, key: StoreKey, value: Any) -> bool:
        """Persist ``value`` under ``key``.

        Returns:
            True if the value is durably stored.
        """


class JsonFileStore(CacheStore):
    """One JSON file per key under a directory.

    Writes go to a temp file in the same directory and are moved into
    place, so a crash mid-write leaves the previous value intact.
    """

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: StoreKey) -> Path:
        return self.root / f"{_key_name(key)}.json"

    def load(self, key: StoreKey) -> Any:
        path = self._path(key)
        if not path.exists():
            return default_for(key)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable cache entry %s: %s", path.name, exc)
            return default_for(key)

    def save(self, key: StoreKey, value: Any) -> bool:
        path = self._path(key)
        tmp_name = None
        try:
            payload = json.dumps(value, indent=2, ensure_ascii=False)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.root,
                prefix=f".{path.stem}-", suffix=".tmp", delete=False,
            ) as tmp:
                tmp.write(payload)
                tmp_name = tmp.name
            os.replace(tmp_name, path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to persist %s: %s", path.name, exc)
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return False


class MemoryStore(CacheStore):
    """Process-local store. Values are copied in and out."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def load(self, key: StoreKey) -> Any:
        name = _key_name(key)
        if name not in self._data:
            return default_for(key)
        return copy.deepcopy(self._data[name])

    def save(self, key: StoreKey, value: Any) -> bool:
        self._data[_key_name(key)] = copy.deepcopy(value)
        return True


def load_cache(store: CacheStore) -> LedgerCache:
    """Assemble a LedgerCache from every key in the store."""
    cache = LedgerCache()
    for kind in DatasetKind:
        value = store.load(kind)
        expected = list if kind.is_list else dict
        if isinstance(value, expected):
            cache.set(kind, value)
        else:
            logger.warning(
                "Ignoring stored %s: expected %s, got %s",
                kind.value, expected.__name__, type(value).__name__,
            )
    marker = store.load(SYNC_MARKER)
    cache.last_sync = str(marker) if marker is not None else NEVER_SYNCED
    token = store.load(VERSION_MARKER)
    cache.version_token = token if isinstance(token, str) else None
    return cache


def save_cache(store: CacheStore, cache: LedgerCache) -> bool:
    """Persist every dataset, the sync marker and the held version token.

    Returns:
        True only if every key was saved.
    """
    results = [store.save(kind, cache.get(kind)) for kind in DatasetKind]
    results.append(store.save(SYNC_MARKER, cache.last_sync))
    results.append(store.save(VERSION_MARKER, cache.version_token))
    return all(results)
