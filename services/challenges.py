"""Challenge service: create, accept, decline, join and cancel remote matches.

State machine (terminal states marked *):

    pending --accept--> ready --first join--> lobby --second join--> in_progress
    pending --decline--> cancelled*        pending/ready --expire--> expired*
    ready/lobby/in_progress --cancel--> cancelled*

Every operation runs in one transaction holding the match row lock; an error
rolls the whole transaction back.
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.db import atomic, utcnow
from core.errors import (
    ChallengeBlocked,
    ChallengeExists,
    Expired,
    InvalidChallenge,
    InvalidTransition,
    MatchNotFound,
    NotParticipant,
)
from core.metrics import challenges_created_total, challenges_resolved_total
from models.block import UserBlock
from models.event import EventType
from models.lock import LockStatus
from models.match import Match, MatchStatus
from services import admission, scoring
from services.events import record_event
from services.lifecycle import (
    is_overdue,
    load_for_update,
    require_participant,
    require_status,
    rolling_deadline,
    set_status,
    terminate,
)

logger = logging.getLogger(__name__)


async def _is_blocked(db: AsyncSession, a: uuid.UUID, b: uuid.UUID) -> bool:
    result = await db.execute(
        select(UserBlock).where(
            or_(
                and_(UserBlock.user_id == a, UserBlock.blocked_id == b),
                and_(UserBlock.user_id == b, UserBlock.blocked_id == a),
            )
        )
    )
    return result.first() is not None


async def create_challenge(
    db: AsyncSession,
    challenger_id: uuid.UUID,
    receiver_id: uuid.UUID,
    match_format: int,
    game_type: str = "501",
    now: datetime | None = None,
) -> Match:
    """
    Create a pending challenge from challenger to receiver.

    Locks are only checked here, not taken: sending a challenge does not
    reserve the challenger. Enforcement happens on acceptance.

    Raises:
        InvalidChallenge: Self-challenge, bad format or unknown game type
        ChallengeBlocked: A blocking relationship exists in either direction
        AlreadyLocked: Either user is in a live match
        ChallengeExists: The pair already has a pending challenge
    """
    now = now or utcnow()

    if challenger_id == receiver_id:
        raise InvalidChallenge("Cannot challenge yourself")
    if match_format < 1:
        raise InvalidChallenge("Match format must be a positive number of legs")
    if not scoring.is_supported(game_type):
        raise InvalidChallenge(f"Unsupported game type: {game_type}")

    async with atomic(db):
        if await _is_blocked(db, challenger_id, receiver_id):
            raise ChallengeBlocked()

        await admission.ensure_available(db, [challenger_id, receiver_id])

        u_lo, u_hi = sorted([challenger_id, receiver_id])
        existing = await db.execute(
            select(Match.id).where(
                and_(Match.u_lo == u_lo, Match.u_hi == u_hi, Match.status == MatchStatus.PENDING)
            )
        )
        existing_id = existing.scalar_one_or_none()
        if existing_id is not None:
            raise ChallengeExists(matchId=str(existing_id))

        match = Match(
            id=uuid.uuid4(),
            mode="remote",
            game_type=game_type,
            match_format=match_format,
            challenger_id=challenger_id,
            receiver_id=receiver_id,
            u_lo=u_lo,
            u_hi=u_hi,
            status=MatchStatus.PENDING,
            scores={},
            legs_won={},
            turn_index_in_leg=0,
            leg_number=1,
            challenge_expires_at=now + timedelta(seconds=settings.challenge_expiry_seconds),
            created_at=now,
            updated_at=now,
        )
        db.add(match)

        try:
            await db.flush()
        except IntegrityError:
            # Concurrent challenge for the same pair won the partial unique index
            raise ChallengeExists() from None

        record_event(db, match, EventType.CREATED, actor_id=challenger_id)

    challenges_created_total.inc()
    logger.info(f"Challenge created: {match.id} ({challenger_id} -> {receiver_id}, best of {match_format})")
    return match


async def accept_challenge(
    db: AsyncSession, match_id: uuid.UUID, receiver_id: uuid.UUID, now: datetime | None = None
) -> Match:
    """
    Accept a pending challenge, locking both participants as a pair.

    Raises:
        NotParticipant: Caller is not the match's receiver
        InvalidTransition: Match is not pending
        Expired: Challenge deadline has passed
        AlreadyLocked: Either participant is in a live match
    """
    now = now or utcnow()

    async with atomic(db):
        match = await load_for_update(db, match_id)
        if match.receiver_id != receiver_id:
            raise NotParticipant("Only the receiver can accept this challenge", matchId=str(match.id))
        require_status(match, MatchStatus.PENDING)
        if match.challenge_expires_at is not None and now >= match.challenge_expires_at:
            raise Expired(matchId=str(match.id))

        await admission.acquire_locks(db, match.id, match.participants, LockStatus.READY)

        set_status(match, MatchStatus.READY, now)
        match.join_window_expires_at = now + timedelta(seconds=settings.join_window_seconds)
        record_event(db, match, EventType.ACCEPTED, actor_id=receiver_id)

    challenges_resolved_total.labels(outcome="accepted").inc()
    logger.info(f"Challenge accepted: {match.id}, join window until {match.join_window_expires_at}")
    return match


async def decline_challenge(
    db: AsyncSession, match_id: uuid.UUID, receiver_id: uuid.UUID, now: datetime | None = None
) -> Match:
    """Decline a pending challenge. No locks exist yet, so none are released."""
    now = now or utcnow()

    async with atomic(db):
        match = await load_for_update(db, match_id)
        if match.receiver_id != receiver_id:
            raise NotParticipant("Only the receiver can decline this challenge", matchId=str(match.id))
        require_status(match, MatchStatus.PENDING)

        await terminate(
            db, match, MatchStatus.CANCELLED, "declined", receiver_id, now, event_type=EventType.DECLINED
        )

    challenges_resolved_total.labels(outcome="declined").inc()
    return match


async def confirm_join(db: AsyncSession, match_id: uuid.UUID, user_id: uuid.UUID, now: datetime | None = None) -> Match:
    """
    Confirm presence for an accepted match.

    The first confirmation moves ready -> lobby. The other participant's
    confirmation starts the match: challenger throws first, scores are set to
    the game's starting score and both locks move to in_progress. A repeated
    confirmation by the same participant changes nothing.

    Raises:
        NotParticipant: Caller is not in this match
        InvalidTransition: Match is not ready or lobby
        Expired: Join window has passed
    """
    now = now or utcnow()

    async with atomic(db):
        match = await load_for_update(db, match_id)
        require_participant(match, user_id)
        require_status(match, MatchStatus.READY, MatchStatus.LOBBY)
        if match.join_window_expires_at is not None and now >= match.join_window_expires_at:
            raise Expired("Join window has expired", matchId=str(match.id))

        is_challenger = user_id == match.challenger_id
        joined_at = match.challenger_joined_at if is_challenger else match.receiver_joined_at
        if joined_at is not None:
            return match

        if is_challenger:
            match.challenger_joined_at = now
        else:
            match.receiver_joined_at = now

        if match.status == MatchStatus.READY:
            set_status(match, MatchStatus.LOBBY, now)
            record_event(db, match, EventType.JOINED, actor_id=user_id)
            logger.info(f"Match {match.id} -> lobby (joined by {user_id})")
        else:
            _start(match, now)
            await admission.update_lock_status(db, match.id, LockStatus.IN_PROGRESS)
            record_event(db, match, EventType.STARTED, actor_id=user_id)
            logger.info(f"Match {match.id} -> in_progress, {match.current_player_id} to throw")

    return match


def _start(match: Match, now: datetime) -> None:
    starting_score = scoring.rules_for(match.game_type).starting_score
    set_status(match, MatchStatus.IN_PROGRESS, now)
    match.leg_starter_id = match.challenger_id
    match.current_player_id = match.challenger_id
    match.scores = {str(uid): starting_score for uid in match.participants}
    match.legs_won = {str(uid): 0 for uid in match.participants}
    match.turn_index_in_leg = 0
    match.leg_number = 1
    match.join_window_expires_at = rolling_deadline(now)


async def cancel_match(
    db: AsyncSession,
    match_id: uuid.UUID,
    user_id: uuid.UUID,
    reason: str | None = None,
    now: datetime | None = None,
) -> Match:
    """
    Cancel a non-terminal match immediately, releasing both locks.

    Raises:
        NotParticipant: Caller is not in this match
        InvalidTransition: Match already ended
    """
    now = now or utcnow()

    async with atomic(db):
        match = await load_for_update(db, match_id)
        require_participant(match, user_id)
        if match.is_terminal:
            raise InvalidTransition(f"Match already {match.status}", matchId=str(match.id), status=str(match.status))

        if reason is None:
            reason = "cancelled" if match.status in (MatchStatus.PENDING, MatchStatus.READY) else "aborted"
        await terminate(db, match, MatchStatus.CANCELLED, reason, user_id, now)

    return match


async def expire_match(db: AsyncSession, match_id: uuid.UUID, user_id: uuid.UUID, now: datetime | None = None) -> Match:
    """
    Client-triggered expiry for a match whose deadline already passed.

    Lets a participant see the result without waiting for the next sweep.

    Raises:
        NotParticipant: Caller is not in this match
        InvalidTransition: Match already ended or no deadline has passed
    """
    now = now or utcnow()

    async with atomic(db):
        match = await load_for_update(db, match_id)
        require_participant(match, user_id)
        if match.is_terminal or not is_overdue(match, now):
            raise InvalidTransition("Match has not expired", matchId=str(match.id), status=str(match.status))

        await terminate(db, match, MatchStatus.EXPIRED, "expired", None, now)

    return match


async def get_match(db: AsyncSession, match_id: uuid.UUID, user_id: uuid.UUID) -> Match:
    """Read the current row for a participant; never blocks writers."""
    result = await db.execute(
        select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise MatchNotFound(matchId=str(match_id))
    require_participant(match, user_id)
    return match


async def list_matches(
    db: AsyncSession, user_id: uuid.UUID, statuses: list[MatchStatus] | None = None, limit: int = 50
) -> list[Match]:
    """Matches the user takes part in, newest first."""
    query = select(Match).where(or_(Match.challenger_id == user_id, Match.receiver_id == user_id))
    if statuses:
        query = query.where(Match.status.in_(statuses))
    query = query.order_by(Match.created_at.desc()).limit(limit).execution_options(populate_existing=True)

    result = await db.execute(query)
    return list(result.scalars().all())
