"""
Pluggable storage backend factory.

Creates the remote and fallback stores behind a SyncClient from
configuration. ``local`` runs without any remote (everything lives in the
SQLite fallback store); ``http`` talks to the hosted document API. Other
backends register via the ``brainsync.remotes`` entry point group.

External backend packages provide a factory function::

    def create_remote(config: SyncConfig) -> RemoteStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."brainsync.remotes"]
    my-backend = "my_package.remote:create_remote"
"""

from typing import NamedTuple

from .config import SyncConfig
from .protocol import FallbackStoreProtocol, RemoteStoreProtocol


class StoreBundle(NamedTuple):
    """The two stores a SyncClient composes."""
    remote: RemoteStoreProtocol
    fallback: FallbackStoreProtocol
    is_local: bool  # True when there is no remote at all


def create_stores(config: SyncConfig) -> StoreBundle:
    """Create remote and fallback stores from configuration."""
    from .fallback_store import FallbackStore

    fallback = FallbackStore(config.fallback_path)
    backend = config.remote.backend
    if backend == "local":
        from .remote import NullRemoteStore
        return StoreBundle(remote=NullRemoteStore(), fallback=fallback, is_local=True)
    if backend == "http":
        remote = _create_http_remote(config)
    else:
        remote = _load_backend(backend, config)
    return StoreBundle(remote=remote, fallback=fallback, is_local=False)


def _create_http_remote(config: SyncConfig) -> RemoteStoreProtocol:
    from .remote import HttpRemoteStore

    if not config.remote.api_url:
        raise ValueError(
            "The http backend needs remote.api_url (or BRAINSYNC_API_URL) to be set"
        )
    return HttpRemoteStore(
        config.remote.api_url,
        config.remote.api_key,
        owner_id=config.remote.owner_id,
        **config.remote.params,
    )


def _load_backend(name: str, config: SyncConfig) -> RemoteStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="brainsync.remotes")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: {['local', 'http', *available]}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. Built-in backends are 'local' and 'http'."
    )
