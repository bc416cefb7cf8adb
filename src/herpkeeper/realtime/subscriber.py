"""Redis subscriber — routes facts from the `messages` channel to the hub.

Learn: The subscriber owns its own Redis connection (a connection in
SUBSCRIBE mode can't issue other commands). A background task reads
pubsub.listen(), decodes each message into a Fact and dispatches it by
type. Only `profile_updated` has a handler today; every other type is
ignored on purpose so new publishers can't break old subscribers.

When the broker goes away the listener drops the dead connection, waits
(exponential backoff, capped) and subscribes again. It keeps doing so
until stop(), so a Redis restart or a Redis that was down at startup
only costs the updates published in between.
"""

import asyncio
from typing import Optional

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from herpkeeper.config import settings
from herpkeeper.events.types import PROFILE_UPDATED, Fact
from herpkeeper.realtime.hub import SessionHub

logger = structlog.get_logger()


class Subscriber:
    """Listens on the broker channel and forwards facts to the session hub."""

    def __init__(
        self,
        hub: SessionHub,
        url: Optional[str] = None,
        channel: Optional[str] = None,
        retry_delay: Optional[float] = None,
        max_retry_delay: Optional[float] = None,
    ):
        self.hub = hub
        self.url = url or settings.redis_url
        self.channel = channel or settings.messages_channel
        self.retry_delay = (
            settings.subscriber_retry_delay if retry_delay is None else retry_delay
        )
        self.max_retry_delay = (
            settings.subscriber_max_retry_delay
            if max_retry_delay is None
            else max_retry_delay
        )
        self._redis: Optional[aioredis.Redis] = None
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def subscribed(self) -> bool:
        return self._pubsub is not None

    def _create_client(self) -> aioredis.Redis:
        return aioredis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def start(self) -> None:
        """Subscribe to the channel. Does nothing if already started.

        Raises if the first subscribe fails; see start_in_background().
        """
        logger.debug("subscriber.start", url=self.url, channel=self.channel)
        if self._task is not None:
            return

        await self._connect()
        self._task = asyncio.create_task(self._listen())

    def start_in_background(self) -> None:
        """Keep trying to subscribe from a background task until stop()."""
        logger.debug("subscriber.start_in_background", url=self.url, channel=self.channel)
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        """Unsubscribe and close. Safe to call when not started."""
        logger.debug("subscriber.stop")
        if self._task is None:
            return

        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("subscriber.listener_failed", channel=self.channel)
        finally:
            if self._pubsub is not None:
                try:
                    await self._pubsub.unsubscribe(self.channel)
                except (RedisError, OSError) as e:
                    logger.debug("subscriber.unsubscribe_failed", error=str(e))
            await self._disconnect()

    async def _connect(self) -> None:
        client = self._create_client()
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except Exception:
            await pubsub.aclose()
            await client.aclose()
            raise

        self._redis = client
        self._pubsub = pubsub
        logger.info("subscriber.subscribed", channel=self.channel)

    async def _disconnect(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        client, self._redis = self._redis, None
        for resource in (pubsub, client):
            if resource is None:
                continue
            try:
                await resource.aclose()
            except (RedisError, OSError) as e:
                logger.debug("subscriber.close_failed", error=str(e))

    async def _listen(self) -> None:
        delay = self.retry_delay
        while True:
            try:
                if self._pubsub is None:
                    await self._connect()
                    delay = self.retry_delay
                async for message in self._pubsub.listen():
                    if message["type"] != "message":
                        continue
                    await self.on_raw_message(message["data"])
                logger.warning("subscriber.listen_ended", channel=self.channel)
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as e:
                logger.error(
                    "subscriber.connection_lost",
                    channel=self.channel,
                    error=str(e),
                    retry_in=delay,
                )

            await self._disconnect()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_delay)

    async def on_raw_message(self, raw: str | bytes) -> None:
        """Decode one wire message and dispatch it. Bad payloads are dropped."""
        logger.debug("subscriber.message", channel=self.channel)
        try:
            fact = Fact.from_json(raw)
        except ValidationError as e:
            logger.error("subscriber.bad_payload", error=str(e))
            return

        try:
            await self.handle_message(fact)
        except Exception:
            logger.exception("subscriber.handler_failed", type=fact.type)

    async def handle_message(self, fact: Fact) -> None:
        """Dispatch a fact by its type."""
        logger.debug("subscriber.handle_message", type=fact.type)
        if fact.type == PROFILE_UPDATED:
            username = fact.data.get("username")
            if not username:
                logger.warning("subscriber.missing_username", type=fact.type)
                return
            await self.hub.deliver(username, fact.data, event_type=PROFILE_UPDATED)
        else:
            logger.debug("subscriber.ignored", type=fact.type)
