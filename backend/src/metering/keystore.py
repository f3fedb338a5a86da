"""Key-value store adapters.

The metering layer only relies on single-key get/put/delete/list with an
optional per-key TTL. There is no read-modify-write primitive and no
multi-key transaction; callers must tolerate stale reads.
"""
import re
import time
from typing import Callable, Optional, Protocol, runtime_checkable

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from metering.config import Settings
from metering.errors import StoreUnavailable

logger = structlog.get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


@runtime_checkable
class KeyStore(Protocol):
    """Contract every store binding has to satisfy."""

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def list(self, prefix: str) -> list[str]:
        ...


class RedisKeyStore:
    """Redis-backed key-value store."""

    def __init__(self, url: Optional[str], socket_timeout: float = 5.0):
        """
        Initialize the adapter without connecting.

        Args:
            url: Redis connection URL, None when the binding is absent
            socket_timeout: Connect and read timeout in seconds
        """
        self.url = url
        self.socket_timeout = socket_timeout
        self.redis_client: Optional[redis.Redis] = None
        self._initialized = False

    async def _ensure_connection(self) -> redis.Redis:
        """
        Ensure Redis connection is established.

        Returns:
            Redis client instance

        Raises:
            StoreUnavailable: If no URL is configured or the server is unreachable
        """
        if not self.url:
            raise StoreUnavailable("Metering store binding is not configured", operation="connect")

        if not self._initialized or self.redis_client is None:
            try:
                self.redis_client = redis.from_url(
                    self.url,
                    decode_responses=False,
                    socket_connect_timeout=self.socket_timeout,
                    socket_timeout=self.socket_timeout,
                )
                await self.redis_client.ping()
                self._initialized = True
                logger.info("store_connected", url=self.url)
            except (RedisError, OSError) as e:
                logger.error("store_connection_failed", error=str(e))
                self.redis_client = None
                raise StoreUnavailable(str(e), operation="connect") from e

        return self.redis_client

    async def get(self, key: str) -> Optional[bytes]:
        """
        Get raw value.

        Args:
            key: Store key

        Returns:
            Stored bytes or None if not found/expired
        """
        client = await self._ensure_connection()
        try:
            value = await client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("store_get_failed", key=key, error=str(e))
            raise StoreUnavailable(str(e), operation="get") from e

        if isinstance(value, str):
            value = value.encode("utf-8")
        return value

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        """
        Store a value, optionally expiring after ttl_seconds.

        Args:
            key: Store key
            value: Serialized value
            ttl_seconds: Time-to-live in seconds, None for no expiry
        """
        client = await self._ensure_connection()
        try:
            if ttl_seconds is None:
                await client.set(key, value)
            else:
                await client.set(key, value, ex=max(1, int(ttl_seconds)))
        except (RedisError, OSError) as e:
            logger.warning("store_put_failed", key=key, error=str(e))
            raise StoreUnavailable(str(e), operation="put") from e

        logger.debug("store_put", key=key, ttl=ttl_seconds)

    async def delete(self, key: str) -> None:
        client = await self._ensure_connection()
        try:
            await client.delete(key)
        except (RedisError, OSError) as e:
            logger.warning("store_delete_failed", key=key, error=str(e))
            raise StoreUnavailable(str(e), operation="delete") from e

    async def list(self, prefix: str) -> list[str]:
        """
        List keys starting with prefix.

        Args:
            prefix: Literal key prefix (glob characters are escaped)

        Returns:
            Matching keys, sorted
        """
        client = await self._ensure_connection()
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        keys = []
        try:
            async for key in client.scan_iter(match=pattern):
                keys.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        except (RedisError, OSError) as e:
            logger.warning("store_list_failed", prefix=prefix, error=str(e))
            raise StoreUnavailable(str(e), operation="list") from e

        return sorted(keys)

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self._initialized = False
            logger.info("store_closed")


class InMemoryKeyStore:
    """Process-local store with TTL support, for tests and local development."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[bytes, Optional[float]]] = {}
        # Last TTL written per key, for assertions in tests
        self.ttls: dict[str, Optional[int]] = {}

    def _live(self, key: str) -> Optional[bytes]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[bytes]:
        return self._live(key)

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None if ttl_seconds is None else self._clock() + max(1, int(ttl_seconds))
        self._data[key] = (bytes(value), expires_at)
        self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(self, prefix: str) -> list[str]:
        return sorted(key for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None)


def build_key_store(config: Settings) -> Optional[KeyStore]:
    """Create the store binding from settings; None when no URL is configured."""
    if not config.redis_url:
        logger.warning("store_binding_absent")
        return None
    return RedisKeyStore(str(config.redis_url), socket_timeout=config.store_socket_timeout)
