"""Tests for durable namespace stores."""

import asyncio
import sqlite3
from unittest.mock import AsyncMock, MagicMock

import pytest

from confmirror.config import StoreConfig
from confmirror.store import (
    MemoryNamespaceStore,
    SQLiteNamespaceStore,
    StoreError,
    create_store,
)


@pytest.fixture
def sqlite_store(tmp_path):
    """Create a SQLite store in a temporary directory."""
    store = SQLiteNamespaceStore(tmp_path / "registry.db")
    store.connect()
    yield store
    if store._conn is not None:
        store._conn.close()


class TestMemoryStore:
    """Tests for the in-memory store."""

    @pytest.mark.asyncio
    async def test_set_fetch_delete(self):
        """Test fields can be written, read and removed."""
        store = MemoryNamespaceStore()

        await store.set_field("config:global", "a", "1")
        await store.set_field("config:global", "b", '"x"')
        await store.delete_field("config:global", "a")

        assert await store.fetch_all("config:global") == {"b": '"x"'}

    @pytest.mark.asyncio
    async def test_unknown_namespace_is_empty(self):
        store = MemoryNamespaceStore()

        assert await store.fetch_all("config:nothing") == {}
        await store.delete_field("config:nothing", "a")

    @pytest.mark.asyncio
    async def test_fetch_returns_copy(self):
        """Test callers cannot mutate stored hashes through a fetch."""
        store = MemoryNamespaceStore({"config:global": {"a": "1"}})

        fields = await store.fetch_all("config:global")
        fields["b"] = "2"

        assert await store.fetch_all("config:global") == {"a": "1"}


class TestSQLiteStore:
    """Tests for the SQLite store."""

    def test_connect_creates_table(self, sqlite_store):
        """Test that connect() creates the namespace_fields table."""
        tables = sqlite_store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()

        assert "namespace_fields" in [t[0] for t in tables]

    def test_connect_is_idempotent(self, sqlite_store):
        conn = sqlite_store._conn
        sqlite_store.connect()

        assert sqlite_store._conn is conn

    @pytest.mark.asyncio
    async def test_close_does_not_block_loop(self, sqlite_store):
        """Test close waits for a running statement without stalling the event loop."""
        sqlite_store._lock.acquire()
        try:
            task = asyncio.create_task(sqlite_store.close())
            await asyncio.sleep(0.05)

            assert not task.done()
            assert sqlite_store._conn is not None
        finally:
            sqlite_store._lock.release()

        await task
        assert sqlite_store._conn is None

    @pytest.mark.asyncio
    async def test_set_and_fetch(self, sqlite_store):
        await sqlite_store.set_field("config:global", "a", "1")
        await sqlite_store.set_field("config:global", "b", "[1, 2]")

        assert await sqlite_store.fetch_all("config:global") == {"a": "1", "b": "[1, 2]"}

    @pytest.mark.asyncio
    async def test_set_overwrites(self, sqlite_store):
        await sqlite_store.set_field("config:global", "a", "1")
        await sqlite_store.set_field("config:global", "a", "2")

        assert await sqlite_store.fetch_all("config:global") == {"a": "2"}

    @pytest.mark.asyncio
    async def test_delete(self, sqlite_store):
        await sqlite_store.set_field("config:global", "a", "1")
        await sqlite_store.delete_field("config:global", "a")
        await sqlite_store.delete_field("config:global", "missing")

        assert await sqlite_store.fetch_all("config:global") == {}

    @pytest.mark.asyncio
    async def test_namespaces_are_separate(self, sqlite_store):
        await sqlite_store.set_field("config:one", "a", "1")
        await sqlite_store.set_field("config:two", "a", "2")

        assert await sqlite_store.fetch_all("config:one") == {"a": "1"}
        assert await sqlite_store.fetch_all("config:two") == {"a": "2"}

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path):
        """Test data written by one store is visible after reopening the file."""
        path = tmp_path / "nested" / "registry.db"
        first = SQLiteNamespaceStore(path)
        await first.set_field("config:global", "a", "1")
        await first.close()

        second = SQLiteNamespaceStore(path)
        try:
            assert await second.fetch_all("config:global") == {"a": "1"}
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        store = SQLiteNamespaceStore(":memory:")
        await store.set_field("config:global", "a", "1")

        assert await store.fetch_all("config:global") == {"a": "1"}
        await store.close()

    @pytest.mark.asyncio
    async def test_unopenable_path_raises_store_error(self, tmp_path):
        """Test a path that is a directory surfaces as StoreError."""
        store = SQLiteNamespaceStore(tmp_path)

        with pytest.raises(StoreError):
            await store.fetch_all("config:global")

    @pytest.mark.asyncio
    async def test_sqlite_errors_are_wrapped(self, sqlite_store):
        """Test driver errors raised during a statement become StoreError."""
        sqlite_store._conn.close()
        sqlite_store._conn = MagicMock()
        sqlite_store._conn.execute.side_effect = sqlite3.OperationalError("disk I/O error")

        with pytest.raises(StoreError):
            await sqlite_store.set_field("config:global", "a", "1")
        with pytest.raises(StoreError):
            await sqlite_store.delete_field("config:global", "a")

        sqlite_store._conn = None


class TestRedisStore:
    """Tests for the Redis store with a mocked client."""

    @pytest.fixture
    def client(self):
        pytest.importorskip("redis")
        client = MagicMock()
        client.hgetall = AsyncMock(return_value={"a": "1"})
        client.hset = AsyncMock(return_value=1)
        client.hdel = AsyncMock(return_value=1)
        client.aclose = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_operations_map_to_hash_commands(self, client):
        from confmirror.store.redis_store import RedisNamespaceStore

        store = RedisNamespaceStore(client=client)

        assert await store.fetch_all("config:global") == {"a": "1"}
        await store.set_field("config:global", "b", "2")
        await store.delete_field("config:global", "a")

        client.hgetall.assert_awaited_once_with("config:global")
        client.hset.assert_awaited_once_with("config:global", "b", "2")
        client.hdel.assert_awaited_once_with("config:global", "a")

    @pytest.mark.asyncio
    async def test_missing_hash_is_empty(self, client):
        from confmirror.store.redis_store import RedisNamespaceStore

        client.hgetall.return_value = {}
        store = RedisNamespaceStore(client=client)

        assert await store.fetch_all("config:global") == {}

    @pytest.mark.asyncio
    async def test_redis_errors_are_wrapped(self, client):
        from redis.exceptions import ConnectionError as RedisConnectionError

        from confmirror.store.redis_store import RedisNamespaceStore

        client.hgetall.side_effect = RedisConnectionError("refused")
        client.hset.side_effect = RedisConnectionError("refused")
        client.hdel.side_effect = RedisConnectionError("refused")
        store = RedisNamespaceStore(client=client)

        with pytest.raises(StoreError):
            await store.fetch_all("config:global")
        with pytest.raises(StoreError):
            await store.set_field("config:global", "a", "1")
        with pytest.raises(StoreError):
            await store.delete_field("config:global", "a")

    @pytest.mark.asyncio
    async def test_close(self, client):
        from confmirror.store.redis_store import RedisNamespaceStore

        store = RedisNamespaceStore(client=client)
        await store.close()
        await store.close()

        client.aclose.assert_awaited_once()


class TestCreateStore:
    """Tests for the store factory."""

    def test_memory(self):
        assert isinstance(create_store(StoreConfig(backend="memory")), MemoryNamespaceStore)

    def test_sqlite(self, tmp_path):
        store = create_store(StoreConfig(backend="sqlite", db_path=str(tmp_path / "r.db")))

        assert isinstance(store, SQLiteNamespaceStore)
        assert store.db_path == tmp_path / "r.db"

    def test_redis(self):
        pytest.importorskip("redis")
        from confmirror.store.redis_store import RedisNamespaceStore

        store = create_store(StoreConfig(backend="redis", redis_url="redis://cache:6379/1"))

        assert isinstance(store, RedisNamespaceStore)
        assert store.redis_url == "redis://cache:6379/1"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_store(StoreConfig(backend="etcd"))
