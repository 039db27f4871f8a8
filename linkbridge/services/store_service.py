"""Typed adapter over the Redis key-value store.

Every call is retried on transient errors with a fixed backoff; once retries are
exhausted a StoreError is raised and the caller aborts the current message.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from redis.exceptions import RedisError

from linkbridge.logging_config import get_logger

logger = get_logger("store_service")

T = TypeVar("T")

TRANSIENT_ERRORS = (RedisError, ConnectionError, OSError, asyncio.TimeoutError)


class StoreError(Exception):
    def __init__(self, operation: str, key: str, cause: Exception):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(f"Store {operation} failed for {key}: {cause}")


class EphemeralStore:
    def __init__(
        self,
        redis_client,
        *,
        retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.redis = redis_client
        self.retries = max(0, retries)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep_func

    async def _with_retry(self, operation: str, key: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await call()
            except TRANSIENT_ERRORS as exc:
                if attempt >= self.retries:
                    logger.error(
                        "Store operation failed, giving up",
                        extra={
                            "context": {"operation": operation, "key": key, "attempts": attempt + 1, "error": str(exc)}
                        },
                    )
                    raise StoreError(operation, key, exc) from exc
                attempt += 1
                logger.warning(
                    f"Store {operation} retry {attempt}/{self.retries}",
                    extra={"context": {"key": key, "error": str(exc)}},
                )
                await self._sleep(self.backoff_seconds)

    async def ping(self) -> bool:
        return bool(await self._with_retry("ping", "-", lambda: self.redis.ping()))

    async def get(self, key: str) -> Any:
        """Return the decoded JSON value, the raw string if it is not JSON, or None."""
        raw = await self._with_retry("get", key, lambda: self.redis.get(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = _encode(value)
        await self._with_retry("set", key, lambda: self.redis.set(key, payload, ex=ttl_seconds))

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        payload = _encode(value)
        was_set = await self._with_retry(
            "set_nx", key, lambda: self.redis.set(key, payload, ex=ttl_seconds, nx=True)
        )
        return bool(was_set)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self._with_retry("expire", key, lambda: self.redis.expire(key, ttl_seconds))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        deleted = await self._with_retry("delete", ",".join(keys), lambda: self.redis.delete(*keys))
        return int(deleted or 0)

    async def exists(self, key: str) -> bool:
        count = await self._with_retry("exists", key, lambda: self.redis.exists(key))
        return bool(count)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter, starting its expiry window on the first hit."""
        count = await self._with_retry("incr", key, lambda: self.redis.incr(key))
        if count == 1:
            await self.expire(key, ttl_seconds)
        return int(count)

    async def scan(self, pattern: str) -> AsyncIterator[str]:
        """Iterate keys matching a glob pattern in store enumeration order.

        Each SCAN page is fetched through the same retry policy as single-key operations.
        """
        cursor = 0
        while True:
            cursor, keys = await self._with_retry(
                "scan", pattern, lambda position=cursor: self.redis.scan(position, match=pattern)
            )
            for key in keys:
                yield key
            if not int(cursor):
                break

    async def get_str(self, key: str) -> Optional[str]:
        value = await self.get(key)
        if value is None:
            return None
        return value if isinstance(value, str) else json.dumps(value)


def _encode(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)
