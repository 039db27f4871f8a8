from linkbridge.logging_config import get_logger
from linkbridge.services.store_service import EphemeralStore, StoreError

logger = get_logger("rate_limit_service")


class RateLimiter:
    """Fixed-window request counter per client key, kept in the store."""

    def __init__(self, store: EphemeralStore, *, limit: int = 100, window_seconds: int = 900):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    async def allow(self, client_key: str) -> bool:
        key = f"ratelimit_api_{client_key}"
        try:
            count = await self.store.incr(key, self.window_seconds)
        except StoreError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return True
        if count > self.limit:
            logger.info("Rate limit exceeded", extra={"context": {"client": client_key, "count": count}})
            return False
        return True
