"""Remote match endpoints: challenge lifecycle, turns and polling."""

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.deps import get_db
from core.auth import gateway_auth
from models.match import Match, MatchStatus
from services import challenges, turns

router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChallengeIn(CamelModel):
    """Request to challenge another user."""

    receiver_id: uuid.UUID
    match_format: int = 1  # best-of-N legs
    game_type: str = "501"


class TurnIn(CamelModel):
    """One visit: the total scored plus the optional individual darts."""

    expected_turn_index: int
    delta: int
    darts: list[int] | None = None


class CancelIn(CamelModel):
    reason: str | None = None


def _iso(match: Match, field: str) -> str | None:
    value = getattr(match, field)
    return value.isoformat() if value else None


@router.post("/challenges", status_code=201)
async def create_challenge(
    body: ChallengeIn,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    """Create a pending challenge from the caller to `receiverId`."""
    match = await challenges.create_challenge(db, user_id, body.receiver_id, body.match_format, body.game_type)
    return {
        "matchId": str(match.id),
        "status": str(match.status),
        "challengeExpiresAt": _iso(match, "challenge_expires_at"),
    }


@router.post("/{match_id}/accept")
async def accept_challenge(
    match_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    """Accept a pending challenge; locks both players and opens the join window."""
    match = await challenges.accept_challenge(db, match_id, user_id)
    return {"status": str(match.status), "joinWindowExpiresAt": _iso(match, "join_window_expires_at")}


@router.post("/{match_id}/decline")
async def decline_challenge(
    match_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    match = await challenges.decline_challenge(db, match_id, user_id)
    return {"status": str(match.status)}


@router.post("/{match_id}/join")
async def confirm_join(
    match_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    """Confirm presence; the second confirmation starts the match."""
    match = await challenges.confirm_join(db, match_id, user_id)
    return {
        "status": str(match.status),
        "currentPlayerId": str(match.current_player_id) if match.current_player_id else None,
    }


@router.post("/{match_id}/turns")
async def submit_turn(
    match_id: uuid.UUID,
    body: TurnIn,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    """
    Submit one visit.

    `expectedTurnIndex` must equal the index the client last saw; a 409
    `stale_turn` response carries the current `turnIndex` to refetch from.
    """
    match = await turns.submit_turn(db, match_id, user_id, body.expected_turn_index, body.delta, body.darts)
    return {
        "status": str(match.status),
        "scores": dict(match.scores),
        "legsWon": dict(match.legs_won),
        "turnIndex": match.turn_index_in_leg,
        "currentPlayerId": str(match.current_player_id) if match.current_player_id else None,
    }


@router.post("/{match_id}/cancel")
async def cancel_match(
    match_id: uuid.UUID,
    body: CancelIn | None = None,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    reason = body.reason if body else None
    match = await challenges.cancel_match(db, match_id, user_id, reason)
    return {"status": str(match.status)}


@router.post("/{match_id}/expire")
async def expire_match(
    match_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    """Expire a match whose deadline passed without waiting for the sweeper."""
    match = await challenges.expire_match(db, match_id, user_id)
    return {"status": str(match.status)}


@router.get("/{match_id}")
async def get_match(
    match_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    """Polling endpoint: the full match snapshot."""
    match = await challenges.get_match(db, match_id, user_id)
    return match.to_snapshot()


@router.get("")
async def list_matches(
    status: list[MatchStatus] | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(gateway_auth),
) -> dict[str, Any]:
    """The caller's matches, newest first, optionally filtered by status."""
    matches = await challenges.list_matches(db, user_id, status, limit)
    return {"matches": [m.to_snapshot() for m in matches]}
