import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisConnection:
    """
    Lazily connected redis client shared by the servers mirror and the refresh broadcast.

    Redis is optional: without a URL, or when the server cannot be reached,
    callers get None and carry on without it.
    """

    def __init__(self, url: Optional[str]):
        self._url = url
        self._client: Optional[redis.Redis] = None
        self._available = False

    async def get_client(self) -> Optional[redis.Redis]:
        """Get Redis client with connection validation."""
        if not self._url:
            return None

        if self._client is None:
            try:
                self._client = redis.from_url(
                    self._url,
                    decode_responses=True,
                    socket_timeout=5.0,
                    socket_connect_timeout=5.0,
                )
                # Test connection
                await self._client.ping()
                self._available = True
                logger.info("Redis connection established")
            except (RedisError, OSError) as e:
                logger.warning(f"Redis connection failed: {e}. Proceeding without shared cache.")
                self._available = False
                self._client = None

        return self._client if self._available else None

    async def close(self):
        """Close Redis connection if open."""
        if self._client:
            try:
                await self._client.aclose()
                logger.debug("Redis connection closed")
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            finally:
                self._client = None
                self._available = False


class ServersMirror:
    """
    Mirror of the configuration document's ``servers`` object for cheap external reads.

    The latest snapshot is always held in memory; it is also pushed to redis
    under ``cache_key`` when redis is available.
    """

    def __init__(self, connection: RedisConnection, cache_key: str):
        self._connection = connection
        self._cache_key = cache_key
        self.snapshot: Optional[str] = None

    @staticmethod
    def serialize(servers: Dict[str, Any]) -> str:
        return json.dumps(servers, indent=2)

    async def publish(self, servers: Dict[str, Any]) -> None:
        """
        Refresh the mirror with a new ``servers`` object.

        A redis failure is logged; the in-memory snapshot is updated regardless.
        """
        self.snapshot = self.serialize(servers)

        redis_client = await self._connection.get_client()
        if not redis_client:
            return

        try:
            await redis_client.set(self._cache_key, self.snapshot)
            logger.debug(f"Mirrored {len(servers)} MCP server(s) to {self._cache_key}")
        except RedisError as e:
            logger.warning(f"Cache write error for {self._cache_key}: {e}")

    async def read(self) -> Optional[str]:
        """Mirrored JSON, preferring the shared copy over the local snapshot."""
        redis_client = await self._connection.get_client()
        if redis_client:
            try:
                cached = await redis_client.get(self._cache_key)
                if cached is not None:
                    return cached
            except RedisError as e:
                logger.warning(f"Cache read error for {self._cache_key}: {e}")
        return self.snapshot
