from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import LockError, RedisError

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client holding the per-(provider, date) booking locks."""

    def __init__(self):
        self.redis_pool = None

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
                socket_keepalive_options={},
            )

            # Test connection
            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def close(self):
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    @staticmethod
    def booking_lock_key(provider_id: int, day: date) -> str:
        return f"booking_lock:{provider_id}:{day.isoformat()}"

    @asynccontextmanager
    async def booking_lock(
        self,
        provider_id: int,
        day: date,
        timeout: Optional[int] = None,
        wait: Optional[float] = None,
    ) -> AsyncIterator[None]:
        """Serialize booking commits for one provider and calendar date.

        The lock expires on its own after ``timeout`` seconds so a crashed
        worker cannot wedge a provider-day. Acquisition waits at most ``wait``
        seconds; failing that the caller gets UpstreamUnavailable and retries.
        """
        key = self.booking_lock_key(provider_id, day)
        try:
            client = await self.get_redis()
            lock = client.lock(
                key,
                timeout=timeout or settings.BOOKING_LOCK_TIMEOUT_SECONDS,
                blocking_timeout=(
                    wait if wait is not None else settings.BOOKING_LOCK_WAIT_SECONDS
                ),
            )
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error("Booking lock unavailable", key=key, exc_info=e)
            raise UpstreamUnavailable("Booking lock service is unreachable") from e

        if not acquired:
            logger.warning("Booking lock contended", key=key)
            raise UpstreamUnavailable(
                "Another booking for this provider and date is in progress"
            )

        logger.debug("Booking lock acquired", key=key)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired while held; the commit already finished or rolled back
                logger.warning("Booking lock expired before release", key=key)
            except RedisError as e:
                logger.error("Failed to release booking lock", key=key, exc_info=e)


# Global Redis client instance
redis_client = RedisClient()
