"""
Configuration management for brainsync.

The configuration is stored as a TOML file in the data directory. It selects
the remote backend and tunes the cache, retry, batching and connection
monitoring behaviour of the sync client.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "brainsync.toml"
CONFIG_VERSION = 1
FALLBACK_FILENAME = "fallback.db"

# High-churn collections get short TTLs
DEFAULT_COLLECTION_TTLS = {
    "projects": 30.0,
    "tasks": 15.0,
}


def get_data_dir() -> Path:
    """Data directory: BRAINSYNC_HOME, else ~/.brainsync."""
    home = os.environ.get("BRAINSYNC_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".brainsync"


@dataclass
class RemoteConfig:
    """Which remote store to use and how to reach it."""
    backend: str = "local"
    api_url: str = ""
    api_key: str = ""
    owner_id: str = "local"
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class SyncConfig:
    """Complete client configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    remote: RemoteConfig = field(default_factory=RemoteConfig)

    # Cache, seconds
    default_ttl: float = 300.0
    collection_ttls: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COLLECTION_TTLS)
    )

    # Backoff executor
    max_retries: int = 3
    base_delay: float = 1.0
    classify_errors: bool = False

    # Batch writer, seconds
    batch_window: float = 0.1

    # Connection monitor; 0 disables polling
    poll_interval: float = 0.0

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def fallback_path(self) -> Path:
        return self.path / FALLBACK_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def ttl_for(self, collection: str) -> float:
        return self.collection_ttls.get(collection, self.default_ttl)


def _apply_env(config: SyncConfig) -> SyncConfig:
    """Environment variables override the file for remote credentials."""
    api_url = os.environ.get("BRAINSYNC_API_URL")
    if api_url:
        config.remote.api_url = api_url
        if config.remote.backend == "local":
            config.remote.backend = "http"
    api_key = os.environ.get("BRAINSYNC_API_KEY")
    if api_key:
        config.remote.api_key = api_key
    owner_id = os.environ.get("BRAINSYNC_OWNER_ID")
    if owner_id:
        config.remote.owner_id = owner_id
    return config


def load_config(store_path: Path) -> SyncConfig:
    """
    Load configuration from a data directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    remote_section = dict(data.get("remote", {}))
    known = {"backend", "api_url", "api_key", "owner_id"}
    remote = RemoteConfig(
        backend=remote_section.get("backend", "local"),
        api_url=remote_section.get("api_url", ""),
        api_key=remote_section.get("api_key", ""),
        owner_id=remote_section.get("owner_id", "local"),
        params={k: v for k, v in remote_section.items() if k not in known},
    )

    cache = data.get("cache", {})
    retry = data.get("retry", {})
    batch = data.get("batch", {})
    connection = data.get("connection", {})

    ttls = dict(DEFAULT_COLLECTION_TTLS)
    ttls.update({k: float(v) for k, v in cache.get("ttl", {}).items()})

    try:
        config = SyncConfig(
            path=store_path,
            version=version,
            created=data.get("store", {}).get("created", ""),
            remote=remote,
            default_ttl=float(cache.get("default_ttl", 300.0)),
            collection_ttls=ttls,
            max_retries=int(retry.get("max_retries", 3)),
            base_delay=float(retry.get("base_delay", 1.0)),
            classify_errors=bool(retry.get("classify_errors", False)),
            batch_window=float(batch.get("window", 0.1)),
            poll_interval=float(connection.get("poll_interval", 0.0)),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    if config.max_retries < 0:
        raise ValueError(f"Invalid config {config_path}: max_retries must be >= 0")
    return _apply_env(config)


def save_config(config: SyncConfig) -> None:
    """
    Save configuration to the data directory.

    Creates the directory if it doesn't exist. Environment overrides are
    written as they currently stand.
    """
    # Ensure directory exists
    config.path.mkdir(parents=True, exist_ok=True)

    remote: dict[str, Any] = {
        "backend": config.remote.backend,
        "api_url": config.remote.api_url,
        "api_key": config.remote.api_key,
        "owner_id": config.remote.owner_id,
    }
    remote.update(config.remote.params)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "remote": remote,
        "cache": {
            "default_ttl": config.default_ttl,
            "ttl": dict(config.collection_ttls),
        },
        "retry": {
            "max_retries": config.max_retries,
            "base_delay": config.base_delay,
            "classify_errors": config.classify_errors,
        },
        "batch": {"window": config.batch_window},
        "connection": {"poll_interval": config.poll_interval},
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path | None = None) -> SyncConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    store_path = store_path or get_data_dir()
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = SyncConfig(path=store_path)
    save_config(config)
    return _apply_env(config)
