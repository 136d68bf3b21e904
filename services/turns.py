"""Turn processor: validate and apply one visit of a remote match.

Submissions are ordered by an optimistic check on ``turn_index_in_leg`` made
while holding the match row lock: of two concurrent submissions carrying the
same expected index, exactly one applies and the other sees StaleTurn.
"""

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from core.db import atomic, utcnow
from core.errors import InvalidTurn, MatchError, NotYourTurn, StaleTurn
from core.metrics import turns_submitted_total
from models.event import EventType
from models.match import Match, MatchStatus
from services import scoring
from services.events import record_event
from services.lifecycle import load_for_update, require_participant, require_status, rolling_deadline, terminate

logger = logging.getLogger(__name__)

MAX_VISIT_SCORE = 180
MAX_DART_SCORE = 60
DARTS_PER_VISIT = 3


async def submit_turn(
    db: AsyncSession,
    match_id: uuid.UUID,
    player_id: uuid.UUID,
    expected_turn_index: int,
    score_delta: int,
    darts: list[int] | None = None,
    rule: scoring.ScoringRule | None = None,
    now: datetime | None = None,
) -> Match:
    """
    Apply a scoring submission and advance the turn order.

    Args:
        db: Database session
        match_id: Match to score
        player_id: Player submitting the visit
        expected_turn_index: Turn index the client last saw
        score_delta: Points scored this visit
        darts: Individual dart scores; must add up to score_delta, stored for the reveal animation
        rule: Scoring rule override; defaults to the game type's rule
        now: Clock override

    Returns:
        Updated match

    Raises:
        InvalidTurn: Delta or darts cannot come from one visit
        NotParticipant: Player is not in this match
        InvalidTransition: Match is not in progress
        StaleTurn: expected_turn_index does not match the stored index
        NotYourTurn: Player is not the current player
    """
    now = now or utcnow()

    try:
        validate_visit(score_delta, darts)
        async with atomic(db):
            match = await load_for_update(db, match_id)
            require_participant(match, player_id)
            require_status(match, MatchStatus.IN_PROGRESS)
            # Checked before turn ownership: a replayed submission is stale, not out of turn
            if expected_turn_index != match.turn_index_in_leg:
                raise StaleTurn(matchId=str(match.id), turnIndex=match.turn_index_in_leg)
            if player_id != match.current_player_id:
                raise NotYourTurn(matchId=str(match.id), currentPlayerId=str(match.current_player_id))

            if _apply(db, match, player_id, score_delta, darts, rule, now):
                await terminate(db, match, MatchStatus.COMPLETED, "completed", player_id, now)
    except MatchError as e:
        turns_submitted_total.labels(outcome=e.code).inc()
        logger.warning(f"Turn rejected for match={match_id} player={player_id}: {e.code}")
        raise

    turns_submitted_total.labels(outcome="applied").inc()
    return match


def validate_visit(score_delta: int, darts: list[int] | None) -> None:
    """Reject a visit three darts cannot score; darts, when sent, must add up to the delta."""
    if not 0 <= score_delta <= MAX_VISIT_SCORE:
        raise InvalidTurn(f"Visit score must be between 0 and {MAX_VISIT_SCORE}", delta=score_delta)
    if darts is None:
        return
    if len(darts) != DARTS_PER_VISIT:
        raise InvalidTurn(f"A visit has exactly {DARTS_PER_VISIT} darts", darts=list(darts))
    if any(not 0 <= dart <= MAX_DART_SCORE for dart in darts):
        raise InvalidTurn(f"Each dart scores between 0 and {MAX_DART_SCORE}", darts=list(darts))
    if sum(darts) != score_delta:
        raise InvalidTurn("Darts do not add up to the visit score", delta=score_delta, darts=list(darts))


def _apply(
    db: AsyncSession,
    match: Match,
    player_id: uuid.UUID,
    score_delta: int,
    darts: list[int] | None,
    rule: scoring.ScoringRule | None,
    now: datetime,
) -> bool:
    """Mutate scores and turn order; returns True when the visit wins the match."""
    game = scoring.rules_for(match.game_type)
    rule = rule or game.rule
    key = str(player_id)

    score_before = match.scores[key]
    score_after, leg_won = rule(score_before, score_delta)

    payload: dict[str, Any] = {
        "playerId": key,
        "delta": score_delta,
        "darts": list(darts or []),
        "scoreBefore": score_before,
        "scoreAfter": score_after,
        "legWon": leg_won,
        "leg": match.leg_number,
        "visit": match.visit_number,
        "turnIndex": match.turn_index_in_leg,
        "timestamp": now.isoformat(),
    }

    # JSON columns are replaced, never mutated in place, so the ORM sees the change
    match.scores = {**match.scores, key: score_after}
    match.last_visit_payload = payload
    match.updated_at = now

    if not leg_won:
        match.turn_index_in_leg += 1
        match.current_player_id = match.opponent_of(player_id)
        match.join_window_expires_at = rolling_deadline(now)
        record_event(db, match, EventType.TURN_TAKEN, actor_id=player_id)
        return False

    legs_won = {**match.legs_won, key: match.legs_won.get(key, 0) + 1}
    match.legs_won = legs_won

    if legs_won[key] >= match.legs_to_win:
        return True

    # Next leg: fresh scores, the other player throws first
    next_starter = match.opponent_of(match.leg_starter_id or player_id)
    match.leg_number += 1
    match.turn_index_in_leg = 0
    match.leg_starter_id = next_starter
    match.current_player_id = next_starter
    match.scores = {str(uid): game.starting_score for uid in match.participants}
    match.join_window_expires_at = rolling_deadline(now)
    record_event(db, match, EventType.LEG_WON, actor_id=player_id)
    logger.info(f"Match {match.id}: leg {match.leg_number - 1} won by {player_id}, {next_starter} starts next")
    return False
