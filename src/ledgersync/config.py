"""
Configuration -- where the remote blob lives and how hard to try.

Stored as YAML at ``<home>/config.yaml``. The write credential is
normally read from an environment variable rather than kept on disk.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger("ledgersync.config")

CONFIG_FILE = "config.yaml"
DEFAULT_TOKEN_ENV = "LEDGERSYNC_TOKEN"


class BackendType(str, Enum):
    """Supported remote blob stores."""

    GITHUB = "github"
    LOCAL = "local"


class RemoteConfig(BaseModel):
    """Coordinates of the remote blob and transport knobs."""

    backend_type: BackendType = BackendType.GITHUB
    owner: str = ""
    repo: str = "ledger-data"
    branch: str = "main"
    data_file: str = "data/gastos.json"

    # Write credential. Env var wins over an inline token.
    token: Optional[str] = None
    token_env_var: Optional[str] = DEFAULT_TOKEN_ENV

    # Local directory store
    local_path: Optional[Path] = None

    timeout: float = 10.0
    conflict_retries: int = 0

    def resolve_token(self) -> Optional[str]:
        """Return the write credential, or None for local-only mode."""
        if self.token_env_var:
            from_env = os.environ.get(self.token_env_var, "").strip()
            if from_env:
                return from_env
        return self.token or None


class LedgerConfig(BaseModel):
    """Complete ledgersync configuration."""

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    pull_interval_seconds: int = 30
    backup_dir: Optional[Path] = None


def load_config(home: Path) -> LedgerConfig:
    """Load configuration from ``<home>/config.yaml``.

    A missing or unreadable file yields the defaults.
    """
    config_file = home / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return LedgerConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)
    return LedgerConfig()


def save_config(home: Path, config: LedgerConfig) -> Path:
    """Write configuration to ``<home>/config.yaml``. Inline tokens are not written."""
    home.mkdir(parents=True, exist_ok=True)
    config_file = home / CONFIG_FILE
    data = config.model_dump(mode="json", exclude_none=True, exclude={"remote": {"token"}})
    config_file.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    logger.info("Saved config to %s", config_file)
    return config_file
