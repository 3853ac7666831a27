# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisTokenStore for stream-gate

This module provides a distributed token store backed by Redis. The claim,
refresh and revoke transitions run as Lua scripts so that each one is a
single atomic step on the server, shared by every gate instance.

Key layout (``ns`` is the namespace, owner ids are base64url encoded):
- ``ns:tok:<secret_hash>``          hash with the token record
- ``ns:id:<token_id>``              string pointing at the secret hash
- ``ns:owner:<owner>:issued``       zset token_id -> created_at
- ``ns:owner:<owner>:live``         zset secret_hash -> expires_at

Records expire from Redis ``retention_seconds`` after creation, which must
cover the longest quota window.
"""

import asyncio
import base64
import contextlib
import logging
import math
import os
import time
from collections.abc import Awaitable, Iterator
from typing import Any, ClassVar, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import (
    ConnectionError,
    NoScriptError,
    RedisError,
    TimeoutError,
)

from ..exceptions import StoreConnectionError, StoreOperationError
from ..types.results import TokenStatistics
from ..types.token import ClientBinding, ResourceDescriptor, StreamToken, TokenState
from .base import BaseTokenStore, HealthCheckResult

logger = logging.getLogger(__name__)


_CLAIM_SCRIPT = """
-- KEYS[1] token key; ARGV[1] now
if redis.call('EXISTS', KEYS[1]) == 0 then
  return false
end
if redis.call('HGET', KEYS[1], 'used') == '1' then
  return false
end
redis.call('HSET', KEYS[1], 'used', '1', 'used_at', ARGV[1], 'last_access_at', ARGV[1])
redis.call('HINCRBY', KEYS[1], 'access_count', 1)
return redis.call('HGETALL', KEYS[1])
"""

_EXTEND_SCRIPT = """
-- KEYS[1] token key, KEYS[2] owner live zset, KEYS[3] id key
-- ARGV[1] owner_id, ARGV[2] now, ARGV[3] new expires_at,
-- ARGV[4] secret_hash, ARGV[5] retention expiry (unix seconds)
if redis.call('EXISTS', KEYS[1]) == 0 then
  return false
end
local f = redis.call('HMGET', KEYS[1], 'owner_id', 'used', 'expires_at')
if f[1] ~= ARGV[1] or f[2] == '1' then
  return false
end
if tonumber(f[3]) <= tonumber(ARGV[2]) then
  return false
end
redis.call('HSET', KEYS[1], 'expires_at', ARGV[3])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[4])
redis.call('EXPIREAT', KEYS[1], ARGV[5])
redis.call('EXPIREAT', KEYS[3], ARGV[5])
return redis.call('HGETALL', KEYS[1])
"""

_REVOKE_SCRIPT = """
-- KEYS[1] token key, KEYS[2] owner live zset
-- ARGV[1] owner_id, ARGV[2] now, ARGV[3] secret_hash
if redis.call('EXISTS', KEYS[1]) == 0 then
  return 0
end
local f = redis.call('HMGET', KEYS[1], 'owner_id', 'used', 'expires_at')
if f[1] ~= ARGV[1] or f[2] == '1' then
  return 0
end
if tonumber(f[3]) <= tonumber(ARGV[2]) then
  return 0
end
redis.call('HSET', KEYS[1], 'used', '1', 'used_at', ARGV[2])
redis.call('ZREM', KEYS[2], ARGV[3])
return 1
"""


@contextlib.contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    """Translate redis-py exceptions into store exceptions."""
    try:
        yield
    except (ConnectionError, TimeoutError) as e:
        logger.error(f"Redis connection error during {operation}: {e}")
        raise StoreConnectionError(f"Token store unavailable during {operation}") from e
    except RedisError as e:
        logger.error(f"Redis error during {operation}: {e}")
        raise StoreOperationError(f"Token store {operation} failed") from e


def _encode_float(value: float | None) -> str:
    return "" if value is None else repr(float(value))


def _decode_float(value: str | None) -> float | None:
    return float(value) if value else None


def _pairs_to_dict(flat: list[Any]) -> dict[str, str]:
    return dict(zip(flat[::2], flat[1::2]))


class RedisTokenStore(BaseTokenStore):
    """
    A distributed Redis token store.

    This store uses:
    - One hash per token, keyed by the secret hash
    - Per-owner sorted sets for issuance counts and active-token lookups
    - Atomic Lua scripts for claim, refresh and revoke

    Deployment Requirements:
    - Redis 4.0+ (multi-field HSET)
    - Clients passed in via ``redis_client`` must use ``decode_responses=True``
    """

    _lua_scripts: ClassVar[dict[str, str]] = {
        "claim": _CLAIM_SCRIPT,
        "extend": _EXTEND_SCRIPT,
        "revoke": _REVOKE_SCRIPT,
    }

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: Any | None = None,
        namespace: str = "stream_gate",
        retention_seconds: int = 172800,
        max_connections: int = 10,
    ) -> None:
        """
        Initialize the Redis token store.

        Args:
            redis_url: Redis connection URL. If not provided, falls back to REDIS_URL
                environment variable, then to "redis://localhost:6379".
            redis_client: Optional pre-configured Redis client
            namespace: Namespace prefix for keys
            retention_seconds: How long after creation records are kept (48h)
            max_connections: Maximum connections per pool

        Environment Variables:
            REDIS_URL: Default Redis connection URL when redis_url parameter is not provided.
        """
        super().__init__(namespace)

        self.redis_url = (
            redis_url or os.environ.get("REDIS_URL") or "redis://localhost:6379"
        )
        self.retention_seconds = retention_seconds
        self.max_connections = max_connections

        # Redis client state
        self._redis: Any | None = redis_client
        self._owned_redis = redis_client is None
        self._pool: ConnectionPool | None = None
        self._event_loop_id: int | None = None
        self._connected = False
        self._connection_lock = asyncio.Lock()

        # Lua script SHAs
        self._script_shas: dict[str, str] = {}

    # ==========================================================================
    # Keys
    # ==========================================================================

    def _owner_b64(self, owner_id: str) -> str:
        return base64.urlsafe_b64encode(owner_id.encode()).decode().rstrip("=")

    def _token_key(self, secret_hash: str) -> str:
        return f"{self.namespace}:tok:{secret_hash}"

    def _id_key(self, token_id: str) -> str:
        return f"{self.namespace}:id:{token_id}"

    def _issued_key(self, owner_id: str) -> str:
        return f"{self.namespace}:owner:{self._owner_b64(owner_id)}:issued"

    def _live_key(self, owner_id: str) -> str:
        return f"{self.namespace}:owner:{self._owner_b64(owner_id)}:live"

    # ==========================================================================
    # Serialization
    # ==========================================================================

    @staticmethod
    def _to_hash(token: StreamToken) -> dict[str, str]:
        return {
            "id": token.id,
            "owner_id": token.owner_id,
            "secret_hash": token.secret_hash,
            "resource": token.resource.model_dump_json(),
            "created_at": _encode_float(token.created_at),
            "expires_at": _encode_float(token.expires_at),
            "used": "1" if token.used else "0",
            "used_at": _encode_float(token.used_at),
            "client_binding": (
                token.client_binding.model_dump_json() if token.client_binding else ""
            ),
            "access_count": str(token.access_count),
            "last_access_at": _encode_float(token.last_access_at),
        }

    @staticmethod
    def _from_hash(data: dict[str, str]) -> StreamToken:
        binding = data.get("client_binding")
        return StreamToken(
            id=data["id"],
            owner_id=data["owner_id"],
            secret_hash=data["secret_hash"],
            resource=ResourceDescriptor.model_validate_json(data["resource"]),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            used=data.get("used") == "1",
            used_at=_decode_float(data.get("used_at")),
            client_binding=(
                ClientBinding.model_validate_json(binding) if binding else None
            ),
            access_count=int(data.get("access_count") or 0),
            last_access_at=_decode_float(data.get("last_access_at")),
        )

    # ==========================================================================
    # Connection Management
    # ==========================================================================

    async def _ensure_connected(self) -> Any:
        """Ensure a Redis connection, re-creating the pool on loop switches."""
        loop_id = id(asyncio.get_running_loop())

        if self._owned_redis and self._event_loop_id and self._event_loop_id != loop_id:
            old_connection = self._redis
            self._redis = None
            self._connected = False
            self._script_shas.clear()
            if old_connection is not None:
                await self._cleanup_connection(self._event_loop_id, old_connection)

        if self._redis is not None and self._connected:
            return self._redis

        async with self._connection_lock:
            if self._redis is not None and self._connected:
                return self._redis

            self._event_loop_id = loop_id
            if self._redis is None:
                self._pool = ConnectionPool.from_url(
                    self.redis_url,
                    max_connections=self.max_connections,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )
                self._redis = Redis(connection_pool=self._pool)
                logger.info(f"Created Redis connection pool for loop {loop_id}")

            try:
                await asyncio.wait_for(
                    cast(Awaitable[bool], self._redis.ping()), timeout=5.0
                )
                await asyncio.wait_for(self._load_scripts(), timeout=10.0)
            except (asyncio.TimeoutError, RedisError) as e:
                logger.warning(f"Redis connection/script load failed: {e}")
                if self._owned_redis:
                    await self._cleanup_connection(loop_id, self._redis)
                    self._redis = None
                raise StoreConnectionError("Token store unavailable") from e

            self._connected = True
            return self._redis

    async def _cleanup_connection(
        self, loop_id: int, connection: Any, timeout: float = 2.5
    ) -> None:
        """Clean up Redis connection with timeout protection."""
        try:
            if hasattr(connection, "aclose"):
                await asyncio.wait_for(connection.aclose(), timeout=timeout)
            elif hasattr(connection, "close"):
                await asyncio.wait_for(connection.close(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Connection cleanup timed out for loop {loop_id}")
        except Exception as e:
            logger.error(f"Error during connection cleanup: {e}")

    async def _load_scripts(self) -> None:
        """Load Lua scripts into Redis."""
        if not self._redis:
            raise RuntimeError("Redis client not initialized")

        for script_name, script_source in self._lua_scripts.items():
            self._script_shas[script_name] = await self._redis.script_load(
                script_source
            )

    async def _evalsha_with_reload(
        self,
        redis_client: Any,
        script_name: str,
        num_keys: int,
        *args: Any,
    ) -> Any:
        """
        Execute EVALSHA with automatic script reload on NoScriptError.

        When a Redis node restarts, all Lua scripts are lost. This method
        detects the NoScriptError, reloads the scripts and retries once.

        Args:
            redis_client: The Redis client to use
            script_name: Name of the Lua script (key in _lua_scripts)
            num_keys: Number of KEYS arguments
            *args: Keys and arguments for the script

        Returns:
            Result from evalsha

        Raises:
            NoScriptError: If reload and retry also fails
            Other Redis exceptions: Passed through unchanged
        """
        script_sha = self._script_shas.get(script_name)
        if not script_sha:
            await self._load_scripts()
            script_sha = self._script_shas[script_name]

        try:
            return await redis_client.evalsha(script_sha, num_keys, *args)
        except NoScriptError:
            logger.warning(
                f"Script '{script_name}' not found in Redis (SHA: {script_sha}). "
                f"Reloading all Lua scripts..."
            )
            self._script_shas.clear()
            await self._load_scripts()

            new_sha = self._script_shas[script_name]
            logger.info(f"Scripts reloaded. Retrying with new SHA: {new_sha}")
            return await redis_client.evalsha(new_sha, num_keys, *args)

    def _retention_deadline(self, created_at: float, expires_at: float) -> int:
        return math.ceil(max(created_at + self.retention_seconds, expires_at))

    # ==========================================================================
    # Token Lifecycle
    # ==========================================================================

    async def insert(self, token: StreamToken) -> None:
        redis_client = await self._ensure_connected()
        deadline = self._retention_deadline(token.created_at, token.expires_at)
        issued_key = self._issued_key(token.owner_id)
        live_key = self._live_key(token.owner_id)
        token_key = self._token_key(token.secret_hash)

        with _redis_errors("insert"):
            async with redis_client.pipeline(transaction=True) as pipe:
                pipe.hset(token_key, mapping=self._to_hash(token))
                pipe.expireat(token_key, deadline)
                pipe.set(self._id_key(token.id), token.secret_hash, exat=deadline)
                pipe.zadd(issued_key, {token.id: token.created_at})
                pipe.zremrangebyscore(
                    issued_key, "-inf", f"({token.created_at - self.retention_seconds}"
                )
                pipe.expire(issued_key, self.retention_seconds)
                pipe.zadd(live_key, {token.secret_hash: token.expires_at})
                pipe.expire(live_key, self.retention_seconds)
                await pipe.execute()
        logger.debug(f"Stored token {token.id} for owner {token.owner_id}")

    async def claim(self, secret_hash: str, now: float) -> StreamToken | None:
        redis_client = await self._ensure_connected()
        with _redis_errors("claim"):
            result = await self._evalsha_with_reload(
                redis_client, "claim", 1, self._token_key(secret_hash), repr(now)
            )
        if not result:
            return None
        return self._from_hash(_pairs_to_dict(result))

    async def get(self, token_id: str) -> StreamToken | None:
        redis_client = await self._ensure_connected()
        with _redis_errors("get"):
            secret_hash = await redis_client.get(self._id_key(token_id))
            if not secret_hash:
                return None
            data = await redis_client.hgetall(self._token_key(secret_hash))
        return self._from_hash(data) if data else None

    # ==========================================================================
    # Owner Queries
    # ==========================================================================

    async def count_issued_since(self, owner_id: str, since: float) -> int:
        redis_client = await self._ensure_connected()
        with _redis_errors("count_issued_since"):
            return int(
                await redis_client.zcount(self._issued_key(owner_id), since, "+inf")
            )

    async def _live_records(
        self, redis_client: Any, owner_id: str, now: float
    ) -> list[StreamToken]:
        """Read an owner's live set, pruning entries that are no longer active."""
        live_key = self._live_key(owner_id)
        await redis_client.zremrangebyscore(live_key, "-inf", now)
        hashes: list[str] = await redis_client.zrange(live_key, 0, -1)
        if not hashes:
            return []

        async with redis_client.pipeline(transaction=False) as pipe:
            for secret_hash in hashes:
                pipe.hgetall(self._token_key(secret_hash))
            rows = await pipe.execute()

        active: list[StreamToken] = []
        stale: list[str] = []
        for secret_hash, row in zip(hashes, rows):
            if not row:
                stale.append(secret_hash)
                continue
            token = self._from_hash(row)
            if token.is_active(now):
                active.append(token)
            else:
                stale.append(secret_hash)
        if stale:
            await redis_client.zrem(live_key, *stale)
        return active

    async def count_active(self, owner_id: str, now: float) -> int:
        redis_client = await self._ensure_connected()
        with _redis_errors("count_active"):
            return len(await self._live_records(redis_client, owner_id, now))

    async def list_active(self, owner_id: str, now: float) -> list[StreamToken]:
        redis_client = await self._ensure_connected()
        with _redis_errors("list_active"):
            active = await self._live_records(redis_client, owner_id, now)
        active.sort(key=lambda t: t.created_at, reverse=True)
        return active

    # ==========================================================================
    # Owner-initiated Transitions
    # ==========================================================================

    async def extend_expiry(
        self, token_id: str, owner_id: str, expires_at: float, now: float
    ) -> StreamToken | None:
        redis_client = await self._ensure_connected()
        with _redis_errors("extend_expiry"):
            secret_hash = await redis_client.get(self._id_key(token_id))
            if not secret_hash:
                return None
            current = await redis_client.hget(self._token_key(secret_hash), "created_at")
            if current is None:
                return None
            deadline = self._retention_deadline(float(current), expires_at)
            result = await self._evalsha_with_reload(
                redis_client,
                "extend",
                3,
                self._token_key(secret_hash),
                self._live_key(owner_id),
                self._id_key(token_id),
                owner_id,
                repr(now),
                repr(expires_at),
                secret_hash,
                deadline,
            )
        if not result:
            return None
        return self._from_hash(_pairs_to_dict(result))

    async def revoke(self, token_id: str, owner_id: str, now: float) -> bool:
        redis_client = await self._ensure_connected()
        with _redis_errors("revoke"):
            secret_hash = await redis_client.get(self._id_key(token_id))
            if not secret_hash:
                return False
            result = await self._evalsha_with_reload(
                redis_client,
                "revoke",
                2,
                self._token_key(secret_hash),
                self._live_key(owner_id),
                owner_id,
                repr(now),
                secret_hash,
            )
        return int(result) == 1

    # ==========================================================================
    # Health and Monitoring
    # ==========================================================================

    async def get_statistics(self, now: float) -> TokenStatistics:
        """Aggregate counts by scanning token keys.

        Uses SCAN instead of KEYS to avoid blocking Redis during large keyspace scans.
        """
        redis_client = await self._ensure_connected()
        stats = TokenStatistics()
        total_access = 0
        total = 0

        with _redis_errors("get_statistics"):
            async for key in redis_client.scan_iter(
                match=f"{self.namespace}:tok:*", count=100
            ):
                row = await redis_client.hgetall(key)
                if not row:
                    continue
                token = self._from_hash(row)
                state = token.state(now)
                if state is TokenState.ACTIVE:
                    stats.total_active += 1
                elif state is TokenState.EXPIRED:
                    stats.total_expired += 1
                else:
                    stats.total_consumed += 1
                total_access += token.access_count
                total += 1

        if total:
            stats.average_access_count = total_access / total
        return stats

    async def health_check(self) -> HealthCheckResult:
        """Perform health check on the store."""
        try:
            redis_client = await self._ensure_connected()

            test_key = f"{self.namespace}:health_check_{int(time.time())}"
            await redis_client.set(test_key, "test", ex=60)
            result = await redis_client.get(test_key)
            await redis_client.delete(test_key)

            info = await redis_client.info()

            return HealthCheckResult(
                healthy=result == "test",
                store_type="redis",
                namespace=self.namespace,
                metadata={
                    "redis_url": self.redis_url,
                    "connected": self._connected,
                    "redis_version": info.get("redis_version"),
                    "used_memory": info.get("used_memory_human"),
                    "connected_clients": info.get("connected_clients"),
                },
            )
        except Exception as e:
            return HealthCheckResult(
                healthy=False,
                store_type="redis",
                namespace=self.namespace,
                error=str(e),
            )

    async def cleanup(self) -> None:
        """Clean up store resources."""
        if self._redis and self._owned_redis:
            try:
                await self._cleanup_connection(
                    self._event_loop_id or 0, self._redis, timeout=2.5
                )
                if self._pool is not None:
                    await self._pool.disconnect()
            except Exception as e:
                logger.error(f"Error during cleanup: {e}")
            finally:
                self._redis = None
                self._pool = None
        self._event_loop_id = None
        self._connected = False

    async def __aenter__(self) -> "RedisTokenStore":
        """Async context manager entry."""
        await self._ensure_connected()
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.cleanup()


__all__ = ["RedisTokenStore"]
