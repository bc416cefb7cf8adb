"""Redis publisher — pushes facts onto the shared `messages` channel.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for profile updates (the frontend can always query the
API to catch up). PUBLISH returns how many subscribers received the message.

One client is shared by every publish call. It is created lazily, checked
with PING before reuse, and replaced if the check fails. A lock keeps
concurrent first publishes from creating more than one client.
"""

import asyncio
from typing import Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from herpkeeper.config import settings
from herpkeeper.events.types import Fact

logger = structlog.get_logger()


class BrokerConnectionError(Exception):
    """Raised when the broker cannot be reached."""


class Publisher:
    """Lazily connected Redis publisher."""

    def __init__(self, url: Optional[str] = None, channel: Optional[str] = None):
        self.url = url or settings.redis_url
        self.channel = channel or settings.messages_channel
        self._redis: Optional[aioredis.Redis] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._redis is not None

    def _create_client(self) -> aioredis.Redis:
        return aioredis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def _is_ready(self, client: aioredis.Redis) -> bool:
        try:
            await client.ping()
            return True
        except (RedisConnectionError, RedisTimeoutError, OSError):
            return False

    async def get_connection(self) -> aioredis.Redis:
        """Return the shared client, creating (or replacing) it if needed."""
        logger.debug("publisher.get_connection", url=self.url)
        async with self._lock:
            if self._redis is not None and not await self._is_ready(self._redis):
                logger.warning("publisher.client_not_ready", url=self.url)
                await self._close_quietly(self._redis)
                self._redis = None

            if self._redis is not None:
                return self._redis

            client = self._create_client()
            try:
                await client.ping()
            except (RedisConnectionError, RedisTimeoutError, OSError) as e:
                await self._close_quietly(client)
                raise BrokerConnectionError(
                    f"Could not connect to broker at {self.url}: {e}"
                ) from e

            logger.debug("publisher.connected", url=self.url)
            self._redis = client
            return self._redis

    async def publish(self, fact: Fact) -> int:
        """Publish a fact. Returns the number of subscribers that got it."""
        logger.debug("publisher.publish", type=fact.type, channel=self.channel)
        message = fact.to_json()
        client = await self.get_connection()
        try:
            return await client.publish(self.channel, message)
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise BrokerConnectionError(f"Publish to {self.channel} failed: {e}") from e

    async def disconnect(self) -> None:
        """Close the shared client if there is one."""
        logger.debug("publisher.disconnect")
        async with self._lock:
            if self._redis is not None:
                client, self._redis = self._redis, None
                await client.aclose()

    async def _close_quietly(self, client: aioredis.Redis) -> None:
        try:
            await client.aclose()
        except (RedisConnectionError, OSError) as e:
            logger.debug("publisher.close_failed", error=str(e))
