"""Transactional outbox feeding the client change feed and push notifications."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow
from models.match import JSONType


class EventType(StrEnum):
    CREATED = "created"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    JOINED = "joined"
    STARTED = "started"
    TURN_TAKEN = "turn_taken"
    LEG_WON = "leg_won"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MatchEvent(Base):
    """One row per committed match transition, written in the same transaction."""

    __tablename__ = "match_events"

    # SQLite only autoincrements INTEGER PRIMARY KEY
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    match_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # match status after the transition
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)  # None for the sweeper
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            "idx_match_events_unpublished",
            "id",
            postgresql_where=text("published_at IS NULL"),
            sqlite_where=text("published_at IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<MatchEvent(id={self.id}, match_id={self.match_id}, type={self.event_type})>"
