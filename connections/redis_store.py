from datetime import timedelta
from typing import Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from core.exceptions import StoreUnavailableError
from domain.interfaces import JobStore, Mutation

logger = structlog.get_logger()

MAX_UPDATE_ATTEMPTS = 10


class RedisJobStore(JobStore):
    """
    Production store. Read-modify-write uses WATCH/MULTI so concurrent
    writers to the same key (the queue) retry instead of clobbering each other.
    """

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisJobStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis GET {key} failed: {e}", original_error=e)

    async def put(self, key: str, value: str, ttl: Optional[timedelta] = None) -> None:
        try:
            await self.client.set(key, value, ex=ttl)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis SET {key} failed: {e}", original_error=e)

    async def update(self, key: str, mutate: Mutation) -> str:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
                    try:
                        await pipe.watch(key)
                        current = await pipe.get(key)
                        new_value = mutate(current)

                        pipe.multi()
                        pipe.set(key, new_value, keepttl=True)
                        await pipe.execute()
                        return new_value
                    except WatchError:
                        logger.info("redis_update_conflict", key=key, attempt=attempt)
                        continue
        except RedisError as e:
            raise StoreUnavailableError(f"Redis update of {key} failed: {e}", original_error=e)

        raise StoreUnavailableError(f"Gave up updating {key} after {MAX_UPDATE_ATTEMPTS} conflicting writes")

    async def close(self) -> None:
        await self.client.aclose()
