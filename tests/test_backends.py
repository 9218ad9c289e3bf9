"""Tests for the remote blob stores."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from ledgersync.config import BackendType, RemoteConfig
from ledgersync.errors import ConflictError, TransportError
from ledgersync.sync.backends import GitHubBlobStore, LocalBlobStore, create_backend


def _response(status: int, body=None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.reason = "reason"
    resp.text = text
    resp.json.return_value = body
    return resp


@pytest.fixture
def github_config() -> RemoteConfig:
    return RemoteConfig(owner="ana", repo="contas", token="secret", token_env_var=None)


class TestGitHubBlobStore:
    """Tests for the GitHub contents backend."""

    def test_fetch_reads_raw_url(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(200, text='{"receitas": []}')
        store = GitHubBlobStore(github_config, session=session)

        result = store.fetch("data/gastos.json")

        assert result.exists and result.content == '{"receitas": []}'
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == "https://raw.githubusercontent.com/ana/contas/main/data/gastos.json"
        assert session.request.call_args.kwargs["timeout"] == 10.0

    def test_fetch_404_is_absent(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(404)
        result = GitHubBlobStore(github_config, session=session).fetch("data/gastos.json")
        assert result.exists is False
        assert result.content is None

    def test_fetch_server_error(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(500)
        with pytest.raises(TransportError):
            GitHubBlobStore(github_config, session=session).fetch("data/gastos.json")

    def test_timeout_becomes_transport_error(self, github_config):
        session = MagicMock()
        session.request.side_effect = requests.Timeout()
        with pytest.raises(TransportError, match="timed out"):
            GitHubBlobStore(github_config, session=session).fetch("data/gastos.json")

    def test_version_token(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(200, body={"sha": "abc"})
        store = GitHubBlobStore(github_config, session=session)

        assert store.fetch_version_token("data/gastos.json") == "abc"
        kwargs = session.request.call_args.kwargs
        assert kwargs["params"] == {"ref": "main"}
        assert kwargs["headers"]["Authorization"] == "token secret"

    def test_version_token_missing(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(404)
        assert GitHubBlobStore(github_config, session=session).fetch_version_token("x") is None

    def test_conditional_write(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(200, body={"content": {"sha": "def"}})
        store = GitHubBlobStore(github_config, session=session)

        token = store.conditional_write("data/gastos.json", '{"a": 1}', "abc", "main")

        assert token == "def"
        method, url = session.request.call_args.args
        assert method == "PUT"
        assert url == "https://api.github.com/repos/ana/contas/contents/data/gastos.json"
        body = session.request.call_args.kwargs["json"]
        assert body["sha"] == "abc"
        assert body["branch"] == "main"
        assert body["message"].startswith("Automatic update - ")
        assert json.loads(base64.b64decode(body["content"])) == {"a": 1}

    def test_create_sends_no_sha(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(201, body={"content": {"sha": "new"}})
        GitHubBlobStore(github_config, session=session).conditional_write("x", "{}", None, "main")
        assert "sha" not in session.request.call_args.kwargs["json"]

    @pytest.mark.parametrize("status", [409, 422])
    def test_conflict(self, github_config, status):
        session = MagicMock()
        session.request.return_value = _response(status)
        with pytest.raises(ConflictError):
            GitHubBlobStore(github_config, session=session).conditional_write("x", "{}", "abc", "main")

    def test_write_without_credential(self):
        config = RemoteConfig(owner="ana", token=None, token_env_var=None)
        session = MagicMock()
        with pytest.raises(TransportError, match="credential"):
            GitHubBlobStore(config, session=session).conditional_write("x", "{}", "abc", "main")
        session.request.assert_not_called()

    def test_head_check_never_raises(self, github_config):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("down")
        assert GitHubBlobStore(github_config, session=session).head_check("x") is False

    def test_versioned_read_uses_contents_api(self, github_config):
        session = MagicMock()
        encoded = base64.b64encode(b'{"despesas": []}').decode("ascii")
        session.request.return_value = _response(
            200, body={"sha": "S2", "encoding": "base64", "content": encoded[:8] + "\n" + encoded[8:]},
        )
        store = GitHubBlobStore(github_config, session=session)

        result = store.fetch_versioned("data/gastos.json")

        assert result.exists
        assert result.token == "S2"
        assert json.loads(result.content) == {"despesas": []}
        assert session.request.call_count == 1
        method, url = session.request.call_args.args
        assert url == "https://api.github.com/repos/ana/contas/contents/data/gastos.json"
        assert session.request.call_args.kwargs["params"] == {"ref": "main"}

    def test_versioned_read_missing(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(404)
        result = GitHubBlobStore(github_config, session=session).fetch_versioned("x")
        assert result.exists is False
        assert result.token is None

    def test_versioned_read_too_large(self, github_config):
        session = MagicMock()
        session.request.return_value = _response(200, body={"sha": "S2", "encoding": "none", "content": ""})
        with pytest.raises(TransportError, match="too large"):
            GitHubBlobStore(github_config, session=session).fetch_versioned("x")

    def test_versioned_read_without_credential_uses_raw(self):
        config = RemoteConfig(owner="ana", repo="contas", token=None, token_env_var=None)
        session = MagicMock()
        session.request.return_value = _response(200, text="{}")

        result = GitHubBlobStore(config, session=session).fetch_versioned("data/gastos.json")

        assert result.token is None
        assert session.request.call_args.args[1].startswith("https://raw.githubusercontent.com/")

    def test_lock_key_names_repository(self, github_config):
        store = GitHubBlobStore(github_config, session=MagicMock())
        assert store.lock_key("data/gastos.json") == "github:ana/contas@main:data/gastos.json"


class TestLocalBlobStore:
    """Tests for the directory backend."""

    def test_create_then_update(self, tmp_path: Path):
        store = LocalBlobStore(RemoteConfig(), root=tmp_path)
        assert store.fetch("data/gastos.json").exists is False
        assert store.fetch_version_token("data/gastos.json") is None

        first = store.conditional_write("data/gastos.json", '{"v": 1}', None, "main")
        assert store.fetch_version_token("data/gastos.json") == first
        assert (tmp_path / "main" / "data" / "gastos.json").read_text() == '{"v": 1}'

        second = store.conditional_write("data/gastos.json", '{"v": 2}', first, "main")
        assert second != first
        assert store.fetch("data/gastos.json").content == '{"v": 2}'

    def test_stale_token_conflicts(self, tmp_path: Path):
        store = LocalBlobStore(RemoteConfig(), root=tmp_path)
        first = store.conditional_write("blob.json", "{}", None, "main")
        store.conditional_write("blob.json", '{"v": 2}', first, "main")

        with pytest.raises(ConflictError):
            store.conditional_write("blob.json", '{"v": 3}', first, "main")
        with pytest.raises(ConflictError):
            store.conditional_write("blob.json", '{"v": 3}', None, "main")

    def test_local_path_overrides_root(self, tmp_path: Path):
        store = LocalBlobStore(RemoteConfig(local_path=tmp_path / "usb"), root=tmp_path / "home")
        assert store.root == tmp_path / "usb"

    def test_head_check(self, tmp_path: Path):
        assert LocalBlobStore(RemoteConfig(), root=tmp_path).head_check("x") is True
        assert LocalBlobStore(RemoteConfig(), root=tmp_path / "missing").head_check("x") is False

    def test_versioned_read_pairs_content_and_token(self, tmp_path: Path):
        store = LocalBlobStore(RemoteConfig(), root=tmp_path)
        token = store.conditional_write("blob.json", '{"v": 1}', None, "main")

        result = store.fetch_versioned("blob.json")
        assert result.content == '{"v": 1}'
        assert result.token == token
        assert store.fetch_versioned("missing.json").exists is False

    def test_lock_key_depends_on_root(self, tmp_path: Path):
        usb = LocalBlobStore(RemoteConfig(), root=tmp_path / "usb")
        nas = LocalBlobStore(RemoteConfig(), root=tmp_path / "nas")
        same = LocalBlobStore(RemoteConfig(), root=tmp_path / "usb")
        assert usb.lock_key("data/gastos.json") != nas.lock_key("data/gastos.json")
        assert usb.lock_key("data/gastos.json") == same.lock_key("data/gastos.json")


class TestCreateBackend:
    """Tests for the backend factory."""

    def test_github(self, tmp_path: Path):
        assert isinstance(create_backend(RemoteConfig(), tmp_path), GitHubBlobStore)

    def test_local_defaults_under_home(self, tmp_path: Path):
        backend = create_backend(RemoteConfig(backend_type=BackendType.LOCAL), tmp_path)
        assert isinstance(backend, LocalBlobStore)
        assert backend.root == tmp_path / "remote"
