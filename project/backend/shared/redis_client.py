"""
Redis client.

Redis connection, caching and per-video run locks.
"""

import json
from typing import Optional, Any
import redis.asyncio as aioredis
from shared.config import settings
from shared.errors import RetryableError, ConfigError

# Compare-and-delete in one round trip so an expired lock taken over by
# another owner is never removed
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisClient:
    """Async Redis client with connection pooling and JSON support."""

    def __init__(self):
        """Initialize Redis client."""
        try:
            self.client: aioredis.Redis = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=False  # We'll handle encoding ourselves
            )
            self.prefix = "storyshort:"
        except Exception as e:
            raise ConfigError(f"Failed to initialize Redis client: {str(e)}") from e

    def _prefix_key(self, key: str) -> str:
        """Add namespace prefix to key."""
        return f"{self.prefix}{key}"

    async def set(
        self,
        key: str,
        value: str,
        ex: Optional[int] = None
    ) -> bool:
        """
        Set a string value in Redis.

        Args:
            key: Cache key
            value: String value to store
            ex: Expiration time in seconds (optional)

        Returns:
            True if successful
        """
        try:
            prefixed_key = self._prefix_key(key)
            await self.client.set(prefixed_key, value.encode("utf-8"), ex=ex)
            return True
        except Exception as e:
            raise RetryableError(f"Failed to set Redis key: {str(e)}") from e

    async def get(self, key: str) -> Optional[str]:
        """
        Get a string value from Redis.

        Args:
            key: Cache key

        Returns:
            String value or None if not found
        """
        try:
            prefixed_key = self._prefix_key(key)
            result = await self.client.get(prefixed_key)
            if result is None:
                return None
            return result.decode("utf-8") if isinstance(result, bytes) else result
        except Exception as e:
            raise RetryableError(f"Failed to get Redis key: {str(e)}") from e

    async def delete(self, key: str) -> bool:
        """
        Delete a key from Redis.

        Args:
            key: Cache key to delete

        Returns:
            True if key was deleted, False if it didn't exist
        """
        try:
            prefixed_key = self._prefix_key(key)
            result = await self.client.delete(prefixed_key)
            return result > 0
        except Exception as e:
            raise RetryableError(f"Failed to delete Redis key: {str(e)}") from e

    async def incr(self, key: str) -> int:
        """
        Atomically increment an integer counter.

        Returns:
            The counter value after the increment
        """
        try:
            return int(await self.client.incr(self._prefix_key(key)))
        except Exception as e:
            raise RetryableError(f"Failed to increment Redis key: {str(e)}") from e

    async def set_json(
        self,
        key: str,
        data: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """
        Set a JSON-serialized value in Redis.

        Args:
            key: Cache key
            data: Python object to serialize and store
            ttl: Time to live in seconds (optional)

        Returns:
            True if successful
        """
        try:
            json_str = json.dumps(data, default=str)  # default=str handles datetime, UUID, etc.
            return await self.set(key, json_str, ex=ttl)
        except Exception as e:
            raise RetryableError(f"Failed to set JSON in Redis: {str(e)}") from e

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get and deserialize a JSON value from Redis.

        Args:
            key: Cache key

        Returns:
            Deserialized Python object or None if not found
        """
        try:
            json_str = await self.get(key)
            if json_str is None:
                return None
            return json.loads(json_str)
        except json.JSONDecodeError as e:
            raise RetryableError(f"Failed to decode JSON from Redis: {str(e)}") from e
        except Exception as e:
            raise RetryableError(f"Failed to get JSON from Redis: {str(e)}") from e

    async def acquire_lock(self, key: str, token: str, ttl: int) -> bool:
        """
        Take a lock if nobody holds it.

        Args:
            key: Lock key
            token: Owner token stored as the lock value
            ttl: Lock lifetime in seconds, so a crashed owner cannot hold it forever

        Returns:
            True if the lock was acquired, False if it is already held
        """
        try:
            result = await self.client.set(
                self._prefix_key(key), token.encode("utf-8"), nx=True, ex=ttl
            )
            return bool(result)
        except Exception as e:
            raise RetryableError(f"Failed to acquire Redis lock: {str(e)}") from e

    async def release_lock(self, key: str, token: str) -> bool:
        """
        Release a lock only if it is still owned by ``token``.

        Returns:
            True if released, False if it had expired or changed hands
        """
        try:
            result = await self.client.eval(
                _RELEASE_LOCK_SCRIPT, 1, self._prefix_key(key), token.encode("utf-8")
            )
            return bool(result)
        except Exception as e:
            raise RetryableError(f"Failed to release Redis lock: {str(e)}") from e

    async def is_locked(self, key: str) -> bool:
        """Check whether a lock is currently held."""
        return await self.get(key) is not None

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            await self.client.ping()
            return True
        except Exception:
            return False

    async def close(self):
        """Close Redis connection."""
        await self.client.close()


# Singleton instance
redis_client = RedisClient()
