"""Durable namespace stores.

Provides the hash-like persistence layer a Registry writes through to:
- MemoryNamespaceStore for tests and single-process use
- SQLiteNamespaceStore for a local file
- RedisNamespaceStore for shared deployments (requires confmirror[redis])
"""

from .base import MemoryNamespaceStore, NamespaceStore, StoreError
from .sqlite_store import SQLiteNamespaceStore

__all__ = [
    "MemoryNamespaceStore",
    "NamespaceStore",
    "SQLiteNamespaceStore",
    "StoreError",
    "create_store",
]


def create_store(config) -> NamespaceStore:
    """Build the store selected by a StoreConfig.

    Args:
        config: StoreConfig instance.

    Returns:
        Unconnected NamespaceStore.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if config.backend == "memory":
        return MemoryNamespaceStore()
    if config.backend == "sqlite":
        return SQLiteNamespaceStore(config.db_path)
    if config.backend == "redis":
        from .redis_store import RedisNamespaceStore

        return RedisNamespaceStore(config.redis_url)
    raise ValueError(f"Unknown store backend: {config.backend}")
