# app/services/infrastructure/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 20
SOCKET_TIMEOUT_SECONDS = 10


class FastRedisClient:
    """Pooled async Redis client shared by the notification cache and readiness checks."""

    def __init__(self, url: str | None = None):
        self._url = url
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    @property
    def url(self) -> str | None:
        return self._url or settings.REDIS_URL

    async def initialize(self) -> None:
        """Open the pool and verify it with a PING."""
        if self._initialized:
            return
        if not self.url:
            raise RuntimeError("REDIS_URL is not configured")

        self.pool = ConnectionPool.from_url(
            self.url,
            max_connections=MAX_CONNECTIONS,
            retry_on_timeout=True,
            retry_on_error=[redis.ConnectionError, redis.TimeoutError],
            socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
            socket_timeout=SOCKET_TIMEOUT_SECONDS,
            health_check_interval=30,
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except redis.RedisError as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            await self.close()
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info(
            "Redis client initialized",
            url_preview=self.url[:30] + "...",
            max_connections=MAX_CONNECTIONS,
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        if self.pool is not None:
            await self.pool.disconnect()
        self.client = None
        self.pool = None
        self._initialized = False
        logger.info("Redis client closed")

    async def get_client(self) -> redis.Redis:
        """Initialized client, connecting lazily on first use."""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
        return self.client

    async def ping(self) -> bool:
        try:
            client = await self.get_client()
            return bool(await client.ping())
        except (redis.RedisError, RuntimeError) as e:
            logger.error("Redis ping failed", error=str(e))
            return False


# Global instance
fast_redis = FastRedisClient()
