"""
Tests for all request store backends.

Covers:
  - InMemoryRequestStore (TTL, upsert, scans, namespaces)
  - FileRequestStore (JSON file persistence)
  - SqlRequestStore (via SQLite for test portability)
  - RedisRequestStore (against an in-test async client)
  - Store factory and database URL translation
"""
import fnmatch
import json
import os
import shutil
import tempfile
import pytest
import pytest_asyncio

NS = "verifier:requests"


@pytest.fixture
def record():
    return {
        "type": "contact",
        "timestamp": 1,
        "status": "pending",
        "snapshot": {"platform": "onebot", "self_id": "10000", "message_id": "m1"},
    }


# ──────────────────────────────────────────────────────────────
#  InMemoryRequestStore
# ──────────────────────────────────────────────────────────────

class TestInMemoryRequestStore:

    @pytest.mark.asyncio
    async def test_set_and_get(self, store, record):
        await store.set(NS, "contact:m1", record)
        assert await store.get(NS, "contact:m1") == record

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get(NS, "contact:none") is None

    @pytest.mark.asyncio
    async def test_set_is_upsert(self, store, record):
        await store.set(NS, "contact:m1", record)
        await store.set(NS, "contact:m1", {**record, "status": "processed"})
        entries = [k async for k, _ in store.entries(NS)]
        assert entries == ["contact:m1"]
        assert (await store.get(NS, "contact:m1"))["status"] == "processed"

    @pytest.mark.asyncio
    async def test_values_are_copied(self, store, record):
        await store.set(NS, "contact:m1", record)
        record["status"] = "mutated"
        loaded = await store.get(NS, "contact:m1")
        loaded["snapshot"]["user_id"] = "changed"
        again = await store.get(NS, "contact:m1")
        assert again["status"] == "pending"
        assert "user_id" not in again["snapshot"]

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, store, clock, record):
        await store.set(NS, "contact:m1", record, ttl=30)
        clock.advance(29)
        assert await store.get(NS, "contact:m1") is not None
        clock.advance(1)
        assert await store.get(NS, "contact:m1") is None
        assert [k async for k, _ in store.entries(NS)] == []

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, store, clock, record):
        await store.set(NS, "contact:m1", record)
        clock.advance(10 ** 9)
        assert await store.get(NS, "contact:m1") is not None

    @pytest.mark.asyncio
    async def test_overwrite_resets_ttl(self, store, clock, record):
        await store.set(NS, "contact:m1", record, ttl=10)
        clock.advance(8)
        await store.set(NS, "contact:m1", record, ttl=10)
        clock.advance(8)
        assert await store.get(NS, "contact:m1") is not None

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, store, record):
        await store.set(NS, "a", record)
        await store.set(NS, "b", record)
        await store.set("other", "a", record)
        await store.delete(NS, "a")
        assert await store.get(NS, "a") is None
        await store.clear(NS)
        assert [k async for k, _ in store.entries(NS)] == []
        assert await store.get("other", "a") is not None

    @pytest.mark.asyncio
    async def test_for_each_sync_and_async(self, store, record):
        await store.set(NS, "a", record)
        await store.set(NS, "b", record)
        seen = []
        await store.for_each(NS, lambda value, key: seen.append(key))

        async def collect(value, key):
            seen.append(value["type"])

        await store.for_each(NS, collect)
        assert sorted(seen) == ["a", "b", "contact", "contact"]

    @pytest.mark.asyncio
    async def test_write_during_scan(self, store, record):
        await store.set(NS, "a", record)
        await store.set(NS, "b", record)
        keys = []
        async for key, value in store.entries(NS):
            keys.append(key)
            await store.set(NS, key, {**value, "status": "processing"})
            if key == "a":
                await store.delete(NS, "b")
        assert keys == ["a"]

    @pytest.mark.asyncio
    async def test_purge_expired(self, store, clock, record):
        await store.set(NS, "a", record, ttl=1)
        await store.set(NS, "b", record)
        clock.advance(2)
        assert store.purge_expired() == 1
        assert store.stats() == {NS: 1}


# ──────────────────────────────────────────────────────────────
#  FileRequestStore
# ──────────────────────────────────────────────────────────────

class TestFileRequestStore:
    @pytest.fixture
    def data_dir(self):
        d = tempfile.mkdtemp(prefix="verifier_test_")
        yield d
        shutil.rmtree(d, ignore_errors=True)

    @pytest.mark.asyncio
    async def test_persistence_across_instances(self, data_dir, record):
        from database.store_file import FileRequestStore

        store1 = FileRequestStore(data_dir=data_dir)
        await store1.set(NS, "contact:m1", record, ttl=3600)
        assert os.path.exists(os.path.join(data_dir, "verifier_requests.json"))

        store2 = FileRequestStore(data_dir=data_dir)
        assert await store2.get(NS, "contact:m1") == record

    @pytest.mark.asyncio
    async def test_expiry_survives_restart(self, data_dir, clock, record):
        from database.store_file import FileRequestStore

        store1 = FileRequestStore(data_dir=data_dir, clock=clock)
        await store1.set(NS, "contact:m1", record, ttl=60)

        clock.advance(61)
        store2 = FileRequestStore(data_dir=data_dir, clock=clock)
        assert await store2.get(NS, "contact:m1") is None

    @pytest.mark.asyncio
    async def test_delete_persisted(self, data_dir, record):
        from database.store_file import FileRequestStore

        store1 = FileRequestStore(data_dir=data_dir)
        await store1.set(NS, "a", record)
        await store1.set(NS, "b", record)
        await store1.delete(NS, "a")

        store2 = FileRequestStore(data_dir=data_dir)
        assert [k async for k, _ in store2.entries(NS)] == ["b"]

    @pytest.mark.asyncio
    async def test_clear_removes_file(self, data_dir, record):
        from database.store_file import FileRequestStore

        store = FileRequestStore(data_dir=data_dir)
        await store.set(NS, "a", record)
        await store.clear(NS)
        assert not os.path.exists(os.path.join(data_dir, "verifier_requests.json"))

    @pytest.mark.asyncio
    async def test_corrupt_file_handled(self, data_dir):
        from database.store_file import FileRequestStore

        with open(os.path.join(data_dir, "verifier_requests.json"), "w") as f:
            f.write("{invalid json!!!")

        # Logs a warning and starts empty
        store = FileRequestStore(data_dir=data_dir)
        assert await store.get(NS, "anything") is None

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped_on_load(self, data_dir, record):
        from database.store_file import FileRequestStore

        entries = {
            "contact:good": {"value": record, "expires_at": None},
            "contact:not_a_dict": "oops",
            "contact:no_value": {"expires_at": None},
            "contact:bad_expiry": {"value": record, "expires_at": "tomorrow"},
        }
        with open(os.path.join(data_dir, "verifier_requests.json"), "w") as f:
            json.dump({"namespace": NS, "entries": entries}, f)

        store = FileRequestStore(data_dir=data_dir)
        assert [k async for k, _ in store.entries(NS)] == ["contact:good"]
        assert await store.get(NS, "contact:no_value") is None

    @pytest.mark.asyncio
    async def test_batched_flush_on_close(self, data_dir, record):
        from database.store_file import FileRequestStore

        store = FileRequestStore(data_dir=data_dir, flush_interval_s=60)
        await store.set(NS, "a", record)
        assert not os.path.exists(os.path.join(data_dir, "verifier_requests.json"))
        await store.close()

        with open(os.path.join(data_dir, "verifier_requests.json")) as f:
            data = json.load(f)
        assert data["namespace"] == NS
        assert "a" in data["entries"]


# ──────────────────────────────────────────────────────────────
#  SqlRequestStore (SQLite)
# ──────────────────────────────────────────────────────────────

class TestSqlRequestStore:
    @pytest_asyncio.fixture
    async def store(self, tmp_path):
        from database.session import close_db
        from database.store import SqlRequestStore

        await close_db()
        s = SqlRequestStore(f"sqlite:///{tmp_path / 'verifier.db'}")
        yield s
        await close_db()

    @pytest.mark.asyncio
    async def test_set_get_upsert(self, store, record):
        await store.set(NS, "contact:m1", record)
        await store.set(NS, "contact:m1", {**record, "status": "processing"})
        loaded = await store.get(NS, "contact:m1")
        assert loaded["status"] == "processing"
        assert [k async for k, _ in store.entries(NS)] == ["contact:m1"]

    @pytest.mark.asyncio
    async def test_expired_rows_invisible(self, store, record):
        await store.set(NS, "old", record, ttl=-1)
        await store.set(NS, "new", record, ttl=3600)
        assert await store.get(NS, "old") is None
        assert [k async for k, _ in store.entries(NS)] == ["new"]

    @pytest.mark.asyncio
    async def test_namespaces_isolated(self, store, record):
        await store.set(NS, "a", record)
        await store.set("other", "a", {"x": 1})
        await store.clear(NS)
        assert await store.get(NS, "a") is None
        assert await store.get("other", "a") == {"x": 1}

    @pytest.mark.asyncio
    async def test_delete_and_purge(self, store, record):
        await store.set(NS, "a", record)
        await store.set(NS, "b", record, ttl=-1)
        await store.delete(NS, "a")
        assert await store.purge_expired() == 1
        assert [k async for k, _ in store.entries(NS)] == []


# ──────────────────────────────────────────────────────────────
#  RedisRequestStore
# ──────────────────────────────────────────────────────────────

class _FakeRedis:
    """Just enough of redis.asyncio.Redis for the store."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.px: dict[str, int] = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, px=None):
        self.data[key] = value
        if px is None:
            self.px.pop(key, None)
        else:
            self.px[key] = px

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)

    async def scan_iter(self, match="*"):
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match.replace("\\", "")):
                yield key

    async def aclose(self):
        self.closed = True


class TestRedisRequestStore:
    @pytest.fixture
    def client(self):
        return _FakeRedis()

    @pytest.fixture
    def store(self, client):
        from database.store_redis import RedisRequestStore
        return RedisRequestStore(client=client)

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, store, client, record):
        await store.set(NS, "contact:m1", record, ttl=1.5)
        assert json.loads(client.data["verifier:requests:contact:m1"]) == record
        assert client.px["verifier:requests:contact:m1"] == 1500

    @pytest.mark.asyncio
    async def test_entries_strip_prefix(self, store, record):
        await store.set(NS, "contact:m1", record)
        await store.set("other", "contact:m2", record)
        assert [(k, v) async for k, v in store.entries(NS)] == [("contact:m1", record)]

    @pytest.mark.asyncio
    async def test_clear_and_close(self, store, client, record):
        await store.set(NS, "a", record)
        await store.set("other", "b", record)
        await store.clear(NS)
        assert list(client.data) == ["other:b"]
        await store.close()
        assert client.closed

    @pytest.mark.asyncio
    async def test_tiny_ttl_is_at_least_one_ms(self, store, client, record):
        await store.set(NS, "a", record, ttl=0.0001)
        assert client.px[f"{NS}:a"] == 1


# ──────────────────────────────────────────────────────────────
#  Store Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def setup_method(self):
        from database.store_factory import reset_store
        reset_store()

    def teardown_method(self):
        from database.store_factory import reset_store
        reset_store()

    def test_create_memory_store(self):
        from database.store_factory import create_store
        from database.store_memory import InMemoryRequestStore
        assert isinstance(create_store({"backend": "memory"}), InMemoryRequestStore)

    def test_create_file_store(self):
        from database.store_factory import create_store, reset_store
        from database.store_file import FileRequestStore
        d = tempfile.mkdtemp(prefix="verifier_factory_")
        try:
            assert isinstance(create_store({"backend": "file", "file_dir": d}), FileRequestStore)
        finally:
            reset_store()
            shutil.rmtree(d, ignore_errors=True)

    def test_file_store_flush_interval_from_config(self):
        from database.store_factory import create_store, reset_store
        from config.settings import StoreConfig
        d = tempfile.mkdtemp(prefix="verifier_factory_")
        try:
            config = StoreConfig(backend="file", file_dir=d, file_flush_interval_s=2.5)
            store = create_store(config.as_factory_config())
            assert store._flush_interval == 2.5
        finally:
            reset_store()
            shutil.rmtree(d, ignore_errors=True)

    def test_create_redis_store(self):
        from database.store_factory import create_store
        from database.store_redis import RedisRequestStore
        assert isinstance(create_store({"backend": "redis", "redis_url": "redis://h:1"}), RedisRequestStore)

    def test_create_sql_store(self):
        from database.store_factory import create_store
        from database.store import SqlRequestStore
        assert isinstance(create_store({"backend": "sql"}), SqlRequestStore)

    def test_default_is_memory(self):
        from database.store_factory import create_store
        from database.store_memory import InMemoryRequestStore
        assert isinstance(create_store({}), InMemoryRequestStore)

    def test_singleton(self):
        from database.store_factory import create_store, get_store
        s1 = create_store({"backend": "memory"})
        assert get_store() is s1


# ──────────────────────────────────────────────────────────────
#  Database Session — URL Translation
# ──────────────────────────────────────────────────────────────

class TestSessionUrlTranslation:
    def test_postgresql_url(self):
        from database.session import _to_async_url
        assert _to_async_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert _to_async_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_mysql_url(self):
        from database.session import _to_async_url
        assert _to_async_url("mysql://u:p@h/db") == "mysql+aiomysql://u:p@h/db"
        assert _to_async_url("mysql+pymysql://u:p@h/db") == "mysql+aiomysql://u:p@h/db"

    def test_sqlite_url(self):
        from database.session import _to_async_url
        assert _to_async_url("sqlite:///./test.db") == "sqlite+aiosqlite:///./test.db"

    def test_async_url_unchanged(self):
        from database.session import _to_async_url
        assert _to_async_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"
