"""
Storage Module - Black Box Interface

Purpose: Abstract the Redis connection used for durable session records
Interface: StorageModule.connect()/disconnect()/ping()
Hidden: Redis specifics, connection pooling, response decoding

Can be replaced with any storage backend without affecting other modules.
"""

import logging
import os
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class StorageModule:
    """Black box storage abstraction."""

    def __init__(self, connection_url: Optional[str] = None, password: Optional[str] = None):
        """
        Initialize storage with connection URL.

        Args:
            connection_url: Redis URL (defaults to REDIS_URL or localhost)
            password: Redis password, passed separately to avoid URL encoding issues
        """
        self.url = connection_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.password = password
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> redis.Redis:
        """Get storage connection."""
        if not self._client:
            self._client = redis.from_url(
                self.url,
                password=self.password,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info(f"Redis client created for {self.url}")
        return self._client

    async def ping(self) -> bool:
        """Check the connection; False if not connected or unreachable."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def disconnect(self):
        """Close storage connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


__all__ = ["StorageModule"]
