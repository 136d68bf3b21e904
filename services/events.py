"""Outbox writer: every committed transition leaves exactly one MatchEvent row."""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from core.db import utcnow
from models.event import EventType, MatchEvent
from models.match import Match


def record_event(
    db: AsyncSession, match: Match, event_type: EventType, actor_id: uuid.UUID | None = None
) -> MatchEvent:
    """Stage an event carrying the post-transition snapshot; committed with the match row."""
    event = MatchEvent(
        match_id=match.id,
        event_type=event_type,
        status=str(match.status),
        actor_id=actor_id,
        payload=match.to_snapshot(),
        created_at=utcnow(),
    )
    db.add(event)
    return event
