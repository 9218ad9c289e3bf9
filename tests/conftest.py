"""Shared test fixtures for ledgersync."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import pytest

from ledgersync.config import LedgerConfig, RemoteConfig
from ledgersync.errors import ConflictError, TransportError
from ledgersync.store import MemoryStore
from ledgersync.sync.backends import BlobStore, FetchResult
from ledgersync.sync.engine import SyncEngine


class FakeBlobStore(BlobStore):
    """In-memory blob store with controllable tokens and connectivity.

    Every conditional write is recorded as ``(expected_token, content)``.
    """

    def __init__(self, blob: Optional[dict] = None, token: Optional[str] = None):
        self.content = json.dumps(blob) if blob is not None else None
        self.token = token if blob is not None else None
        self.online = True
        self.writes: list[tuple[Optional[str], str]] = []
        self.fetches = 0
        self._counter = 0

    @property
    def name(self) -> str:
        return "fake"

    def _check_online(self) -> None:
        if not self.online:
            raise TransportError("network unreachable")

    def fetch(self, path: str) -> FetchResult:
        self._check_online()
        self.fetches += 1
        return FetchResult(content=self.content, exists=self.content is not None)

    def fetch_version_token(self, path: str) -> Optional[str]:
        self._check_online()
        return self.token

    def conditional_write(self, path, content, expected_token, branch) -> str:
        self._check_online()
        self.writes.append((expected_token, content))
        if expected_token != self.token:
            raise ConflictError(f"expected {expected_token}, found {self.token}")
        self._counter += 1
        self.token = f"new-{self._counter}"
        self.content = content
        return self.token

    def head_check(self, path: str) -> bool:
        return self.online

    def advance(self, blob: dict, token: str) -> None:
        """Simulate another writer updating the blob."""
        self.content = json.dumps(blob)
        self.token = token

    @property
    def blob(self) -> dict:
        return json.loads(self.content) if self.content else {}


@pytest.fixture(autouse=True)
def _no_env_token(monkeypatch):
    monkeypatch.delenv("LEDGERSYNC_TOKEN", raising=False)


@pytest.fixture
def fake_remote() -> FakeBlobStore:
    """Remote holding a small ledger at token "abc"."""
    return FakeBlobStore(
        blob={
            "receitas": [{"id": 1, "descricao": "Salario", "valor": 5000}],
            "despesas": [],
            "orcamentos": {"moradia": 1500},
        },
        token="abc",
    )


@pytest.fixture
def empty_remote() -> FakeBlobStore:
    """Remote where the blob has never been written."""
    return FakeBlobStore()


@pytest.fixture
def make_engine():
    """Factory: engine over a MemoryStore and the given remote."""

    def _make(remote: BlobStore, credential: Optional[str] = "secret", **remote_options) -> SyncEngine:
        config = LedgerConfig(
            remote=RemoteConfig(token=credential, token_env_var=None, **remote_options),
        )
        return SyncEngine(config, MemoryStore(), remote)

    return _make


@pytest.fixture
def ledger_home(tmp_path: Path) -> Path:
    """Provide a temporary ledgersync home directory."""
    home = tmp_path / ".ledgersync"
    home.mkdir()
    return home
