from typing import Optional

from redis.asyncio import Redis

from .config import settings


class RedisManager:
    _instance: Optional[Redis] = None

    @classmethod
    def get_client(cls, url: Optional[str] = None) -> Redis:
        if cls._instance is None:
            cls._instance = Redis.from_url(url or settings.REDIS_URL, decode_responses=True)
        return cls._instance

    @classmethod
    async def close(cls):
        if cls._instance is not None:
            await cls._instance.aclose()
            cls._instance = None
