import asyncio
import uuid

import fakeredis
import pytest

from posledger.core.types import DecimalCodec, IntegerCodec
from posledger.ledger import Ledger
from posledger.storage.memory import InMemoryStore
from posledger.storage.redis import RedisStore
from posledger.storage.sql import SqliteConnectionProvider, SqliteStore


@pytest.fixture
def memory_store():
    """Provides memory store."""
    return InMemoryStore()


@pytest.fixture
def sqlite_path(tmp_path):
    return str(tmp_path / "ledger.db")


@pytest.fixture
def sqlite_store(sqlite_path):
    """Provides a SQLite store on a temp file, shut down after the test."""
    store = SqliteStore(SqliteConnectionProvider(sqlite_path), max_workers=4)
    yield store
    asyncio.run(store.close())


@pytest.fixture
def fake_redis():
    """In-process Redis with Lua scripting, private to one test."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_store(fake_redis):
    return RedisStore(prefix="test", client=fake_redis)


@pytest.fixture(params=["memory", "sqlite", "redis"])
def store(request, memory_store, sqlite_path):
    """Every test using this fixture runs once per backend."""
    if request.param == "memory":
        yield memory_store
        return
    if request.param == "redis":
        yield request.getfixturevalue("redis_store")
        return
    store = SqliteStore(SqliteConnectionProvider(sqlite_path), max_workers=4)
    yield store
    asyncio.run(store.close())


@pytest.fixture
def decimal_ledger(store):
    return Ledger(store.open_table("balances", DecimalCodec(scale=2)))


@pytest.fixture
def integer_ledger(store):
    return Ledger(store.open_table("points", IntegerCodec()))


@pytest.fixture
def u1():
    return uuid.UUID("11111111-1111-4111-8111-111111111111")


@pytest.fixture
def u2():
    return uuid.UUID("22222222-2222-4222-8222-222222222222")


@pytest.fixture
def u3():
    return uuid.UUID("33333333-3333-4333-8333-333333333333")
