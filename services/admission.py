"""Admission controller: per-user locks for live remote matches.

The `match_locks` primary key is the serialization point. Acquisition is an
insert that fails if the user already holds a lock for any live match. The
pre-check turns the common case into a clean error and clears locks left
behind by finished matches; the unique key settles concurrent races.
"""

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import utcnow
from core.errors import AlreadyLocked
from core.metrics import lock_conflicts_total
from models.lock import LockStatus, MatchLock
from models.match import TERMINAL_STATUSES, Match

logger = logging.getLogger(__name__)


async def find_lock(db: AsyncSession, user_id: uuid.UUID) -> MatchLock | None:
    result = await db.execute(select(MatchLock).where(MatchLock.user_id == user_id))
    return result.scalar_one_or_none()


async def ensure_available(db: AsyncSession, user_ids: Iterable[uuid.UUID]) -> None:
    """
    Raise AlreadyLocked if any user is in a live match.

    A lock still pointing at a finished or missing match is left over from an
    interrupted release; it is deleted here instead of blocking the user until
    the next sweep.
    """
    result = await db.execute(
        select(MatchLock, Match.status)
        .outerjoin(Match, Match.id == MatchLock.match_id)
        .where(MatchLock.user_id.in_(sorted(set(user_ids))))
        .order_by(MatchLock.user_id)
    )
    rows = result.all()

    for lock, match_status in rows:
        if match_status is not None and match_status not in TERMINAL_STATUSES:
            lock_conflicts_total.inc()
            logger.warning(f"Lock conflict: user={lock.user_id} holds match={lock.match_id}")
            raise AlreadyLocked(userId=str(lock.user_id), matchId=str(lock.match_id))

    for lock, _ in rows:
        user_id, match_id = lock.user_id, lock.match_id
        await release_lock(db, user_id, match_id)
        logger.info(f"Cleaned up stale lock for user={user_id} match={match_id}")


async def acquire_lock(
    db: AsyncSession, user_id: uuid.UUID, match_id: uuid.UUID, lock_status: LockStatus = LockStatus.READY
) -> MatchLock:
    """Insert a lock row for one user or raise AlreadyLocked."""
    locks = await acquire_locks(db, match_id, [user_id], lock_status)
    return locks[0]


async def acquire_locks(
    db: AsyncSession,
    match_id: uuid.UUID,
    user_ids: Iterable[uuid.UUID],
    lock_status: LockStatus = LockStatus.READY,
) -> list[MatchLock]:
    """
    Acquire locks for several users all-or-nothing.

    Rows are inserted in ascending user id order so two transactions
    competing for an overlapping pair always contend on the same row first.
    On failure nothing is left staged; the caller's transaction is expected
    to roll back.

    Raises:
        AlreadyLocked: If any user already holds a lock for a live match
    """
    ordered = sorted(set(user_ids))
    await ensure_available(db, ordered)

    now = utcnow()
    locks = [MatchLock(user_id=uid, match_id=match_id, lock_status=lock_status, updated_at=now) for uid in ordered]
    db.add_all(locks)

    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent acceptance
        lock_conflicts_total.inc()
        logger.warning(f"Lock conflict on insert for match={match_id}, users={ordered}")
        raise AlreadyLocked() from None

    return locks


async def update_lock_status(db: AsyncSession, match_id: uuid.UUID, lock_status: LockStatus) -> int:
    """Move both locks of a match to a new status; returns rows touched."""
    result = await db.execute(
        update(MatchLock)
        .where(MatchLock.match_id == match_id)
        .values(lock_status=lock_status, updated_at=utcnow())
    )
    return result.rowcount or 0


async def release_lock(db: AsyncSession, user_id: uuid.UUID, match_id: uuid.UUID | None = None) -> int:
    """Delete a user's lock. Idempotent: a missing row is not an error."""
    stmt = delete(MatchLock).where(MatchLock.user_id == user_id)
    if match_id is not None:
        stmt = stmt.where(MatchLock.match_id == match_id)
    result = await db.execute(stmt)
    return result.rowcount or 0


async def release_match_locks(db: AsyncSession, match_id: uuid.UUID) -> int:
    """Delete every lock that references a match."""
    result = await db.execute(delete(MatchLock).where(MatchLock.match_id == match_id))
    return result.rowcount or 0
