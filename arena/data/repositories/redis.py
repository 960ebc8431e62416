from redis.asyncio import Redis
from redis.exceptions import RedisError

from arena.config import Config, logger
from arena.errors import DatabaseException

redis_logger = logger.getChild("redis")


class RedisClient:
    """A singleton Redis client used for cross-process locks."""

    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(RedisClient, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if getattr(self, "_initialized", False):
            return
        self.redis = None
        self._connected = False
        self._initialized = True

    async def connect(self):
        if self.redis is None:
            try:
                self.redis = Redis(
                    host=Config.REDIS_HOST,
                    port=Config.REDIS_PORT,
                    db=0,
                    password=Config.REDIS_PASSWORD or None,
                    decode_responses=True,
                )
                await self.redis.ping()
                self._connected = True
                redis_logger.info(
                    f"Connected to Redis at {Config.REDIS_HOST}:{Config.REDIS_PORT}"
                )
            except RedisError as e:
                self.redis = None
                redis_logger.error(f"Redis connection error: {str(e)}")
                raise DatabaseException(detail="Redis connection error")

    async def close(self):
        if self.redis:
            await self.redis.close()
            self.redis = None
            self._connected = False

    async def lock(self, name: str, timeout: float, blocking_timeout: float):
        """
        Return a distributed lock usable as ``async with``.

        The lock expires after ``timeout`` seconds so a crashed holder never
        blocks matchmaking forever; acquiring waits up to ``blocking_timeout``.
        """
        if not self._connected:
            await self.connect()
        return self.redis.lock(
            name, timeout=timeout, blocking_timeout=blocking_timeout
        )


redis_client = RedisClient()


async def get_redis_client() -> RedisClient:
    return redis_client
