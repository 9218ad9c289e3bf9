"""
Remote blob stores -- where the ledger blob lives.

Each store can read a blob, report its version token, and write it back
only if the token still matches. Stores hold no ledger state and never
retry; the engine decides what a failure means.

GitHub: contents API. The blob sha is the version token.
Local: a plain directory (USB drive, NAS, shared mount). The SHA-256 of
the content is the version token.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import requests

from ..config import BackendType, RemoteConfig
from ..errors import ConflictError, TransportError

logger = logging.getLogger("ledgersync.sync.backends")


@dataclass
class FetchResult:
    """Outcome of a blob read.

    ``token`` is only set by reads that return content and version token
    from the same snapshot.
    """

    content: Optional[str]
    exists: bool
    token: Optional[str] = None


class BlobStore(ABC):
    """Abstract versioned blob store with conditional writes."""

    @abstractmethod
    def fetch(self, path: str) -> FetchResult:
        """Read the blob at ``path``.

        Raises:
            TransportError: If the store could not be reached.
        """

    @abstractmethod
    def fetch_version_token(self, path: str) -> Optional[str]:
        """Current version token of ``path``, or None if it does not exist.

        Raises:
            TransportError: If the store could not be reached.
        """

    @abstractmethod
    def conditional_write(
        self,
        path: str,
        content: str,
        expected_token: Optional[str],
        branch: str,
    ) -> str:
        """Write ``content`` only if the stored token equals ``expected_token``.

        A None ``expected_token`` means "create": it only succeeds while
        the path does not exist yet.

        Returns:
            The new version token.

        Raises:
            ConflictError: If the token no longer matches.
            TransportError: On any other failure.
        """

    @abstractmethod
    def head_check(self, path: str) -> bool:
        """Cheap reachability check. Never raises."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable store name."""

    def fetch_versioned(self, path: str) -> FetchResult:
        """Read the blob together with the token of that exact content.

        The default asks for the token first, so a concurrent write shows
        up as a conflict on the next push rather than being hidden.
        """
        token = self.fetch_version_token(path)
        result = self.fetch(path)
        result.token = token if result.exists else None
        return result

    def lock_key(self, path: str) -> str:
        """Identity of the blob at ``path`` for single-flight locking."""
        return f"{self.name}:{path}"


class GitHubBlobStore(BlobStore):
    """Blob kept as a file in a GitHub repository.

    Anonymous reads and reachability checks go through
    raw.githubusercontent.com. Versioned reads, token lookups and writes
    go through the contents API.
    """

    API_URL = "https://api.github.com"
    RAW_URL = "https://raw.githubusercontent.com"

    def __init__(self, config: RemoteConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._token = config.resolve_token()
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return "github"

    @property
    def base_url(self) -> str:
        return f"{self.API_URL}/repos/{self.config.owner}/{self.config.repo}"

    @property
    def raw_url(self) -> str:
        return f"{self.RAW_URL}/{self.config.owner}/{self.config.repo}/{self.config.branch}"

    def _headers(self, api: bool = True) -> dict[str, str]:
        headers = {"Cache-Control": "no-cache"}
        if api:
            headers["Accept"] = "application/vnd.github.v3+json"
        if self._token:
            headers["Authorization"] = f"token {self._token}"
        return headers

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self._session.request(
                method, url, timeout=self.config.timeout, **kwargs,
            )
        except requests.Timeout as exc:
            raise TransportError(f"{method} {url} timed out") from exc
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

    def fetch(self, path: str) -> FetchResult:
        resp = self._request("GET", f"{self.raw_url}/{path}", headers=self._headers(api=False))
        if resp.status_code == 404:
            return FetchResult(content=None, exists=False)
        if not resp.ok:
            raise TransportError(f"HTTP {resp.status_code}: {resp.reason}")
        return FetchResult(content=resp.text, exists=True)

    def fetch_version_token(self, path: str) -> Optional[str]:
        resp = self._request(
            "GET", f"{self.base_url}/contents/{path}",
            headers=self._headers(), params={"ref": self.config.branch},
        )
        if resp.status_code == 404:
            return None
        if not resp.ok:
            raise TransportError(f"HTTP {resp.status_code}: {resp.reason}")
        try:
            return resp.json().get("sha")
        except (ValueError, AttributeError) as exc:
            raise TransportError(f"Unexpected contents response: {exc}") from exc

    def fetch_versioned(self, path: str) -> FetchResult:
        """Content and sha from one contents API response.

        The raw host is CDN-cached and may lag the API. Without a credential
        this falls back to the raw read.
        """
        if not self._token:
            return self.fetch(path)

        resp = self._request(
            "GET", f"{self.base_url}/contents/{path}",
            headers=self._headers(), params={"ref": self.config.branch},
        )
        if resp.status_code == 404:
            return FetchResult(content=None, exists=False)
        if not resp.ok:
            raise TransportError(f"HTTP {resp.status_code}: {resp.reason}")
        try:
            body = resp.json()
            sha = body["sha"]
            encoding = body.get("encoding")
            raw = body.get("content") or ""
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise TransportError(f"Unexpected contents response: {exc}") from exc

        if encoding != "base64":
            # Files over 1 MB come back without inline content.
            raise TransportError(
                f"{path} has no inline content (encoding {encoding!r}); "
                "blob too large for the contents API"
            )
        try:
            content = base64.b64decode(raw).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise TransportError(f"Undecodable content for {path}: {exc}") from exc
        return FetchResult(content=content, exists=True, token=sha)

    def lock_key(self, path: str) -> str:
        return f"{self.name}:{self.config.owner}/{self.config.repo}@{self.config.branch}:{path}"

    def conditional_write(
        self,
        path: str,
        content: str,
        expected_token: Optional[str],
        branch: str,
    ) -> str:
        if not self._token:
            raise TransportError("No write credential configured")

        body = {
            "message": f"Automatic update - {datetime.now().strftime('%d/%m/%Y %H:%M:%S')}",
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if expected_token:
            body["sha"] = expected_token

        resp = self._request(
            "PUT", f"{self.base_url}/contents/{path}",
            headers=self._headers(), json=body,
        )
        # 409: sha mismatch. 422: file exists but no sha was sent.
        if resp.status_code in (409, 422):
            raise ConflictError(
                f"{path} changed on {self.name} (expected {expected_token})"
            )
        if not resp.ok:
            raise TransportError(f"Write failed: HTTP {resp.status_code}")
        try:
            new_token = resp.json()["content"]["sha"]
        except (ValueError, KeyError, TypeError) as exc:
            raise TransportError(f"Unexpected write response: {exc}") from exc

        logger.info("Blob written to %s/%s@%s", self.config.repo, path, branch)
        return new_token

    def head_check(self, path: str) -> bool:
        try:
            resp = self._request("HEAD", f"{self.raw_url}/{path}", headers=self._headers(api=False))
        except TransportError:
            return False
        return resp.ok


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class LocalBlobStore(BlobStore):
    """Directory-backed blob store, laid out as ``<root>/<branch>/<path>``.

    Conditional writes are serialized within the process.
    """

    def __init__(self, config: RemoteConfig, root: Optional[Path] = None):
        self.config = config
        base = config.local_path or root
        if base is None:
            raise ValueError("LocalBlobStore needs local_path or a root directory")
        self.root = Path(base).expanduser()
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "local"

    def _blob_path(self, path: str, branch: Optional[str] = None) -> Path:
        return self.root / (branch or self.config.branch) / path

    def _read_bytes(self, target: Path) -> Optional[bytes]:
        if not target.exists():
            return None
        try:
            return target.read_bytes()
        except OSError as exc:
            raise TransportError(f"Cannot read {target}: {exc}") from exc

    def fetch(self, path: str) -> FetchResult:
        data = self._read_bytes(self._blob_path(path))
        if data is None:
            return FetchResult(content=None, exists=False)
        return FetchResult(content=data.decode("utf-8"), exists=True)

    def fetch_version_token(self, path: str) -> Optional[str]:
        data = self._read_bytes(self._blob_path(path))
        return _digest(data) if data is not None else None

    def fetch_versioned(self, path: str) -> FetchResult:
        with self._lock:
            data = self._read_bytes(self._blob_path(path))
        if data is None:
            return FetchResult(content=None, exists=False)
        return FetchResult(content=data.decode("utf-8"), exists=True, token=_digest(data))

    def lock_key(self, path: str) -> str:
        return f"{self.name}:{self.root.resolve()}/{self.config.branch}/{path}"

    def conditional_write(
        self,
        path: str,
        content: str,
        expected_token: Optional[str],
        branch: str,
    ) -> str:
        target = self._blob_path(path, branch)
        payload = content.encode("utf-8")
        with self._lock:
            current = self._read_bytes(target)
            current_token = _digest(current) if current is not None else None
            if current_token != expected_token:
                raise ConflictError(
                    f"{path} changed on {self.name} "
                    f"(expected {expected_token}, found {current_token})"
                )
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
                with os.fdopen(fd, "wb") as tmp:
                    tmp.write(payload)
                os.replace(tmp_name, target)
            except OSError as exc:
                raise TransportError(f"Cannot write {target}: {exc}") from exc

        logger.info("Blob written to local store: %s", target)
        return _digest(payload)

    def head_check(self, path: str) -> bool:
        return self.root.exists()


def create_backend(config: RemoteConfig, home: Path) -> BlobStore:
    """Factory function to create the configured blob store.

    Args:
        config: Remote configuration.
        home: ledgersync home directory (default root of the local store).

    Returns:
        Instantiated BlobStore.

    Raises:
        ValueError: If the backend type is not supported.
    """
    if config.backend_type == BackendType.GITHUB:
        return GitHubBlobStore(config)
    if config.backend_type == BackendType.LOCAL:
        return LocalBlobStore(config, root=home / "remote")
    raise ValueError(f"Unsupported backend: {config.backend_type}")
