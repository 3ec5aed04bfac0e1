"""Application configuration — JSON-based, with file locking and batch update support.

The SSH password is never written: secret keys are stripped on every save.
"""

from __future__ import annotations

import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

from romhost.models.connection import ConnectionDescriptor

_instance: "Config | None" = None

# Default data directory
_DEFAULT_DATA_DIR = Path.home() / ".romhost"
DATA_DIR_ENV = "ROMHOST_DATA_DIR"

SECRET_KEYS = frozenset({"password", "secret", "sshPassword"})
DEFAULT_SSH_PORT = 22


def default_data_dir() -> Path:
    env = os.environ.get(DATA_DIR_ENV)
    return Path(env).expanduser() if env else _DEFAULT_DATA_DIR


def get_app_config() -> Config:
    """Module-level factory — single global Config instance."""
    global _instance
    if _instance is None:
        _instance = Config()
    return _instance


def reset_config() -> None:
    """Reset the global config instance (for testing)."""
    global _instance
    _instance = None


def _strip_secrets(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in SECRET_KEYS}


class Config:
    """
    JSON-based application configuration with file locking.

    Known keys: ``sshHost``, ``sshPort``, ``sshUser`` and the legacy
    ``targetFolders`` (source name → remote directory).  Unknown keys are
    kept as they are.
    """

    FILE_NAME = "config.json"

    def __init__(self, config_dir: Path | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._dir = config_dir or default_data_dir()
        self._path = self._dir / self.FILE_NAME
        self._lock = threading.Lock()
        self._defer_save = False
        self._load()

    def _load(self) -> None:
        """Load config from disk. A missing or unreadable file means empty."""
        self._data = {}
        if not self._path.exists():
            return
        try:
            with open(self._path, encoding="utf-8") as f:
                user_data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load config, using defaults: {e}")
            return
        if not isinstance(user_data, dict):
            logger.warning("Config file is not a JSON object, using defaults")
            return
        self._data = _strip_secrets(user_data)

    def _save(self) -> None:
        """Persist config to disk with file locking."""
        if self._defer_save:
            return
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(_strip_secrets(self._data), f, ensure_ascii=False, indent=2)
                tmp_path.replace(self._path)
            except OSError as e:
                logger.error(f"Failed to save config: {e}")
                if tmp_path.exists():
                    tmp_path.unlink(missing_ok=True)

    @contextmanager
    def batch_update(self) -> Iterator[None]:
        """Context manager for batching multiple config changes into a single write."""
        self._defer_save = True
        try:
            yield
        finally:
            self._defer_save = False
            self._save()

    # ── Whole-document access ──

    def get_config(self) -> dict[str, Any]:
        """Deep copy of the stored document."""
        return json.loads(json.dumps(self._data))

    def save_config(self, config: dict[str, Any]) -> None:
        """Replace the stored document with *config* (secrets dropped)."""
        self._data = _strip_secrets(json.loads(json.dumps(config)))
        self._save()

    # ── Generic access ──

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key path."""
        parts = key.split(".")
        node = self._data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dot-separated key path."""
        parts = key.split(".")
        if parts[0] in SECRET_KEYS:
            logger.warning(f"Refusing to store secret key '{parts[0]}' in config")
            return
        node = self._data
        for part in parts[:-1]:
            if part not in node or not isinstance(node[part], dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = value
        self._save()

    def remember_connection(self, descriptor: ConnectionDescriptor) -> None:
        """Cache host, port and user of a successful connection."""
        with self.batch_update():
            for key, value in descriptor.public_fields().items():
                self.set(key, value)

    # ── Typed properties ──

    @property
    def data_dir(self) -> Path:
        return self._dir

    @property
    def log_dir(self) -> Path:
        return self._dir / "logs"

    @property
    def ssh_host(self) -> str:
        return str(self._data.get("sshHost") or "")

    @ssh_host.setter
    def ssh_host(self, value: str) -> None:
        self.set("sshHost", value)

    @property
    def ssh_port(self) -> int:
        try:
            return int(self._data.get("sshPort") or DEFAULT_SSH_PORT)
        except (TypeError, ValueError):
            return DEFAULT_SSH_PORT

    @ssh_port.setter
    def ssh_port(self, value: int) -> None:
        self.set("sshPort", int(value))

    @property
    def ssh_user(self) -> str:
        return str(self._data.get("sshUser") or "")

    @ssh_user.setter
    def ssh_user(self, value: str) -> None:
        self.set("sshUser", value)

    @property
    def target_folders(self) -> dict[str, str]:
        raw = self._data.get("targetFolders", {})
        return dict(raw) if isinstance(raw, dict) else {}

    @target_folders.setter
    def target_folders(self, value: dict[str, str]) -> None:
        self.set("targetFolders", dict(value))
