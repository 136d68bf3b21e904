"""Change feed relay: publishes committed outbox rows to per-match Redis streams.

Consumers tail ``match.feed:{match_id}``; ``seq`` is the outbox row id, so an
entry re-published after a crash between XADD and commit can be dropped.
"""

import asyncio
import json
import logging

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.workers.notifier import Notifier
from core.config import settings
from core.db import AsyncSessionLocal, utcnow
from core.metrics import feed_events_published_total
from core.redis import append_to_stream, get_redis
from models.event import MatchEvent

logger = logging.getLogger(__name__)


def feed_stream(match_id: object) -> str:
    return f"match.feed:{match_id}"


class FeedRelay:
    """Polls the outbox and publishes in id order."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.redis_client = redis_client
        self.session_factory = session_factory or AsyncSessionLocal
        self.notifier = notifier or Notifier()
        self.running = False

    async def start(self) -> None:
        """Start the relay loop."""
        self.running = True
        if self.redis_client is None:
            self.redis_client = await get_redis()
        logger.info("Feed relay started")

        while self.running:
            try:
                published = await self.relay_once()
            except Exception:
                logger.exception("Feed relay batch failed")
                published = 0

            # Drain a backlog without sleeping
            if published < settings.feed_batch_size:
                await asyncio.sleep(settings.feed_poll_interval_seconds)

    async def stop(self) -> None:
        """Stop the relay loop."""
        self.running = False

    async def relay_once(self) -> int:
        """
        Publish one batch of unpublished events.

        Rows stay locked until commit, so two relays never publish the same
        batch concurrently.

        Returns:
            Number of events published
        """
        if self.redis_client is None:
            self.redis_client = await get_redis()

        async with self.session_factory() as db:
            result = await db.execute(
                select(MatchEvent)
                .where(MatchEvent.published_at.is_(None))
                .order_by(MatchEvent.id)
                .limit(settings.feed_batch_size)
                .with_for_update()
            )
            events = result.scalars().all()
            if not events:
                return 0

            now = utcnow()
            for event in events:
                await append_to_stream(
                    self.redis_client,
                    feed_stream(event.match_id),
                    {
                        "seq": event.id,
                        "event_type": event.event_type,
                        "status": event.status,
                        "actor_id": event.actor_id,
                        "payload": json.dumps(event.payload),
                        "created_at": event.created_at.isoformat(),
                    },
                )
                await self.notifier.dispatch(self.redis_client, event)
                event.published_at = now
                feed_events_published_total.labels(event_type=event.event_type).inc()

            await db.commit()

        logger.info(f"Published {len(events)} feed event(s), last seq={events[-1].id}")
        return len(events)


async def main() -> None:
    """Run feed relay."""
    logging.basicConfig(level=settings.log_level)
    relay = FeedRelay()
    try:
        await relay.start()
    except KeyboardInterrupt:
        await relay.stop()


if __name__ == "__main__":
    asyncio.run(main())
