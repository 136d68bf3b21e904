"""Shared helpers for match transitions: row locking, guards, termination."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import InvalidTransition, MatchNotFound, NotParticipant
from core.metrics import matches_ended_total
from models.event import EventType
from models.match import STATUS_RANK, Match, MatchStatus
from services import admission
from services.events import record_event

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = {
    MatchStatus.COMPLETED: EventType.COMPLETED,
    MatchStatus.EXPIRED: EventType.EXPIRED,
    MatchStatus.CANCELLED: EventType.CANCELLED,
}


async def load_for_update(db: AsyncSession, match_id: uuid.UUID) -> Match:
    """Fetch a match holding an exclusive row lock until the transaction ends."""
    result = await db.execute(
        select(Match).where(Match.id == match_id).with_for_update().execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise MatchNotFound(matchId=str(match_id))
    return match


def require_participant(match: Match, user_id: uuid.UUID) -> None:
    if not match.is_participant(user_id):
        raise NotParticipant(matchId=str(match.id))


def require_status(match: Match, *allowed: MatchStatus) -> None:
    if match.status not in allowed:
        raise InvalidTransition(
            f"Cannot perform this action while match is {match.status}",
            matchId=str(match.id),
            status=str(match.status),
        )


def set_status(match: Match, new_status: MatchStatus, now: datetime) -> None:
    """Move forward in the lifecycle; equal-rank moves are only allowed into a terminal status."""
    current_rank = STATUS_RANK[MatchStatus(match.status)]
    new_rank = STATUS_RANK[new_status]
    if new_rank < current_rank or (new_rank == current_rank and match.is_terminal):
        raise InvalidTransition(matchId=str(match.id), status=str(match.status))
    match.status = new_status
    match.updated_at = now


def rolling_deadline(now: datetime) -> datetime | None:
    """Deadline for a started match; refreshed on every turn."""
    if settings.turn_timeout_seconds <= 0:
        return None
    return now + timedelta(seconds=settings.turn_timeout_seconds)


def is_overdue(match: Match, now: datetime) -> bool:
    """True when the deadline governing the match's current status has passed."""
    if (
        match.status in (MatchStatus.PENDING, MatchStatus.READY)
        and match.challenge_expires_at is not None
        and match.challenge_expires_at < now
    ):
        return True
    return (
        match.status in (MatchStatus.READY, MatchStatus.LOBBY, MatchStatus.IN_PROGRESS)
        and match.join_window_expires_at is not None
        and match.join_window_expires_at < now
    )


async def terminate(
    db: AsyncSession,
    match: Match,
    new_status: MatchStatus,
    reason: str,
    ended_by: uuid.UUID | None,
    now: datetime,
    event_type: EventType | None = None,
) -> Match:
    """Stamp a terminal status, release both locks and stage the event."""
    set_status(match, new_status, now)
    match.ended_at = now
    match.ended_by = ended_by
    match.ended_reason = reason
    match.current_player_id = None

    released = await admission.release_match_locks(db, match.id)
    record_event(db, match, event_type or _TERMINAL_EVENTS[new_status], actor_id=ended_by)
    matches_ended_total.labels(reason=reason).inc()

    logger.info(f"Match {match.id} -> {new_status} (reason={reason}, by={ended_by}, locks_released={released})")
    return match
