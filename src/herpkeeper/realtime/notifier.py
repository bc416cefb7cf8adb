"""Profile update notifier — glue from "profile saved" to the event bus.

Learn: ProfileService calls notify_profile_saved() right after it commits.
Publishing happens in a background task so the write never waits on
Redis, and a broker outage only costs a log line (at-most-once,
best-effort delivery). drain() lets shutdown and tests wait for the
tasks still in flight.
"""

import asyncio
from typing import Any

import structlog
from redis.exceptions import RedisError

from herpkeeper.events.types import profile_updated_fact
from herpkeeper.realtime.publisher import BrokerConnectionError, Publisher

logger = structlog.get_logger()


class ProfileUpdateNotifier:
    """Turns committed profile writes into published facts."""

    def __init__(self, publisher: Publisher):
        self.publisher = publisher
        self._pending: set[asyncio.Task] = set()

    async def profile_saved(self, profile_id: Any, username: str) -> int:
        """Publish a profile_updated fact. Never raises; returns receivers."""
        logger.debug("notifier.profile_saved", profile_id=str(profile_id), username=username)
        fact = profile_updated_fact(profile_id, username)
        try:
            return await self.publisher.publish(fact)
        except (BrokerConnectionError, RedisError) as e:
            logger.warning(
                "notifier.publish_failed",
                profile_id=str(profile_id),
                username=username,
                error=str(e),
            )
            return 0
        except Exception:
            logger.exception(
                "notifier.publish_crashed",
                profile_id=str(profile_id),
                username=username,
            )
            return 0

    def notify_profile_saved(self, profile_id: Any, username: str) -> asyncio.Task:
        """Schedule profile_saved() without blocking the caller."""
        task = asyncio.create_task(self.profile_saved(profile_id, username))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled publish to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
