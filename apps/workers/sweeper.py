"""Expiration sweeper: reaps challenges and matches past their deadlines."""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.db import AsyncSessionLocal, utcnow
from core.metrics import sweep_duration_seconds, sweep_expired_total, sweep_runs_total
from models.lock import MatchLock
from models.match import TERMINAL_STATUSES, Match, MatchStatus
from services.lifecycle import terminate

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired_challenges: int = 0
    expired_matches: int = 0
    released_locks: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.expired_challenges or self.expired_matches or self.released_locks)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ExpirationSweeper:
    """Periodic, idempotent job; safe to run from several processes at once."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self.session_factory = session_factory or AsyncSessionLocal
        self.running = False

    async def start(self) -> None:
        """Run a sweep every `sweep_interval_seconds` until stopped."""
        self.running = True
        logger.info(f"Expiration sweeper started, interval={settings.sweep_interval_seconds}s")

        while self.running:
            await self.run_once()
            await asyncio.sleep(settings.sweep_interval_seconds)

    async def stop(self) -> None:
        """Stop the sweeper."""
        self.running = False

    async def run_once(self, now: datetime | None = None) -> SweepResult:
        """
        Execute one sweep. Never raises: failures are logged and the next run retries.

        Steps, each in its own short transaction:
        1. pending/ready past challenge_expires_at -> expired
        2. ready/lobby/in_progress past join_window_expires_at -> expired
        3. delete locks still pointing at terminal matches
        """
        now = now or utcnow()
        result = SweepResult()
        t0 = time.perf_counter()

        try:
            result.expired_challenges = await self._expire(
                now,
                "challenge",
                and_(
                    Match.status.in_([MatchStatus.PENDING, MatchStatus.READY]),
                    Match.challenge_expires_at < now,
                ),
            )
            result.expired_matches = await self._expire(
                now,
                "join_window",
                and_(
                    Match.status.in_([MatchStatus.READY, MatchStatus.LOBBY, MatchStatus.IN_PROGRESS]),
                    Match.join_window_expires_at < now,
                ),
            )
            result.released_locks = await self._release_orphaned_locks()
        except Exception:
            logger.exception("Expiration sweep failed")
        finally:
            sweep_runs_total.inc()
            sweep_duration_seconds.observe(time.perf_counter() - t0)

        if result.changed:
            logger.info(f"Sweep: {result.to_dict()}")
        return result

    async def _expire(self, now: datetime, kind: str, criteria) -> int:
        async with self.session_factory() as db:
            # Rows locked by an in-flight request are left for the next run
            rows = await db.execute(
                select(Match)
                .where(criteria)
                .order_by(Match.id)
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            matches = rows.scalars().all()

            for match in matches:
                await terminate(db, match, MatchStatus.EXPIRED, "expired", None, now)

            await db.commit()

        if matches:
            sweep_expired_total.labels(kind=kind).inc(len(matches))
        return len(matches)

    async def _release_orphaned_locks(self) -> int:
        async with self.session_factory() as db:
            terminal_ids = select(Match.id).where(Match.status.in_(list(TERMINAL_STATUSES)))
            result = await db.execute(
                delete(MatchLock)
                .where(MatchLock.match_id.in_(terminal_ids))
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount or 0


async def main() -> None:
    """Run expiration sweeper."""
    logging.basicConfig(level=settings.log_level)
    sweeper = ExpirationSweeper()
    try:
        await sweeper.start()
    except KeyboardInterrupt:
        await sweeper.stop()


if __name__ == "__main__":
    asyncio.run(main())
