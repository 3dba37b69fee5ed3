from meeting_backend.config.config import settings
import redis.asyncio as redis_async


class RedisClient:
    def __init__(self, host: str = settings.REDIS_HOST, port: int = settings.REDIS_PORT, db: int = settings.REDIS_DB) -> None:
        self.__client = redis_async.Redis(host=host, port=port, db=db, decode_responses=True)

    @property
    def client(self) -> redis_async.Redis:
        return self.__client
