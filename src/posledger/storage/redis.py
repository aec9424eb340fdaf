"""
Redis Ledger Backend.

Each ledger table is one Redis hash (field = uuid, value = integer units)
plus a running total key. Every update is a single Lua script, which Redis
runs atomically, and the total is adjusted inside the same script so
``total()`` is one GET.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from posledger.core.logging import get_logger
from posledger.core.types import V, ValueCodec
from posledger.storage.base import LedgerStore, LedgerTable, register_ledger_backend

if TYPE_CHECKING:
    from posledger.core.config import Config

logger = get_logger("storage.redis")

# Compares two non-negative integer strings without converting to Lua
# numbers, which are doubles and lose precision above 2^53.
_GE = """
local function ge(a, b)
  if #a ~= #b then return #a > #b end
  return a >= b
end
"""

# KEYS[1] = hash, KEYS[2] = total; ARGV[1] = uuid, ARGV[2] = units
#
# Redis keeps the writes a script made before an error, so anything that can
# overflow runs before the row is touched. The total is never smaller than a
# row, so it overflows first.
_ADD_SCRIPT = """
redis.call("INCRBY", KEYS[2], ARGV[2])
redis.call("HINCRBY", KEYS[1], ARGV[1], ARGV[2])
return 1
"""

_SET_SCRIPT = """
local old = redis.call("HGET", KEYS[1], ARGV[1])
if old then
  redis.call("DECRBY", KEYS[2], old)
end
local raised = redis.pcall("INCRBY", KEYS[2], ARGV[2])
if type(raised) == "table" and raised.err then
  if old then
    redis.call("INCRBY", KEYS[2], old)
  end
  return raised
end
redis.call("HSET", KEYS[1], ARGV[1], ARGV[2])
return 1
"""

_TAKE_SCRIPT = _GE + """
local current = redis.call("HGET", KEYS[1], ARGV[1])
if not current or not ge(current, ARGV[2]) then
  return 0
end
if ARGV[2] ~= "0" then
  redis.call("HINCRBY", KEYS[1], ARGV[1], "-" .. ARGV[2])
  redis.call("DECRBY", KEYS[2], ARGV[2])
end
return 1
"""


class RedisStore(LedgerStore):
    """
    Redis ledger store.

    Uses Redis for persistent storage. Suitable for production.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "posledger",
        client: Any | None = None,
    ) -> None:
        """
        Initialize Redis store.

        Args:
            redis_url: Redis connection URL
            prefix: Key prefix for all ledger keys
            client: Pre-built ``redis.asyncio`` client (the URL is ignored)
        """
        self._redis_url = redis_url
        self.prefix = prefix
        self._client = client

    @classmethod
    def from_config(cls, config: Config) -> RedisStore:
        return cls(redis_url=config.redis_url, prefix=config.redis_prefix)

    @property
    def client(self) -> Any:
        """Lazy-load Redis client."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def open_table(self, table: str, codec: ValueCodec[Any]) -> RedisLedgerTable[Any]:
        return RedisLedgerTable(self, table, codec)

    async def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            await self.client.ping()
            return True
        except (RedisError, OSError) as exc:
            logger.warning(f"Redis health check failed: {exc}")
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class RedisLedgerTable(LedgerTable[V]):
    """Ledger table stored in a Redis hash."""

    store_errors = (RedisError, OSError)

    def __init__(self, store: RedisStore, table: str, codec: ValueCodec[V]) -> None:
        super().__init__(table, codec)
        self._store = store
        self._hash_key = f"{store.prefix}:{table}"
        self._total_key = f"{store.prefix}:{table}:_total"

    async def _eval(self, script: str, key: str, units: int) -> int:
        result = await self._store.client.eval(
            script, 2, self._hash_key, self._total_key, key, str(units)
        )
        return int(result)

    async def _create_schema(self) -> None:
        # Redis needs no DDL; register the table name so it can be discovered
        await self._store.client.sadd(f"{self._store.prefix}:_tables", self.table)

    async def _fetch(self, key: str) -> int | None:
        value = await self._store.client.hget(self._hash_key, key)
        return None if value is None else int(value)

    async def _upsert_set(self, key: str, units: int) -> None:
        await self._eval(_SET_SCRIPT, key, units)

    async def _upsert_add(self, key: str, units: int) -> None:
        await self._eval(_ADD_SCRIPT, key, units)

    async def _guarded_take(self, key: str, units: int) -> bool:
        return await self._eval(_TAKE_SCRIPT, key, units) == 1

    async def _sum(self) -> int:
        value = await self._store.client.get(self._total_key)
        return 0 if value is None else int(value)


# Register backend
register_ledger_backend("redis", RedisStore)
