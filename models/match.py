import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


class MatchStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    LOBBY = "lobby"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({MatchStatus.COMPLETED, MatchStatus.EXPIRED, MatchStatus.CANCELLED})

# Statuses that require both participants to hold a lock
LIVE_STATUSES = frozenset({MatchStatus.READY, MatchStatus.LOBBY, MatchStatus.IN_PROGRESS})

# Partial order used to reject backward transitions; all terminal statuses rank equal
STATUS_RANK = {
    MatchStatus.PENDING: 0,
    MatchStatus.READY: 1,
    MatchStatus.LOBBY: 2,
    MatchStatus.IN_PROGRESS: 3,
    MatchStatus.COMPLETED: 4,
    MatchStatus.EXPIRED: 4,
    MatchStatus.CANCELLED: 4,
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _str(value: uuid.UUID | None) -> str | None:
    return str(value) if value else None


class Match(Base):
    """Remote match between a challenger and a receiver."""

    __tablename__ = "matches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    mode: Mapped[str] = mapped_column(String(8), nullable=False, default="remote")  # local, remote
    game_type: Mapped[str] = mapped_column(String(16), nullable=False, default="501")
    match_format: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # best-of-N legs
    challenger_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    receiver_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    # Ordered pair for deduplication: u_lo = min(challenger, receiver), u_hi = max(challenger, receiver)
    u_lo: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    u_hi: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MatchStatus.PENDING)

    # Gameplay
    current_player_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    leg_starter_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    scores: Mapped[dict[str, int]] = mapped_column(JSONType, nullable=False, default=dict)
    legs_won: Mapped[dict[str, int]] = mapped_column(JSONType, nullable=False, default=dict)
    turn_index_in_leg: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leg_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_visit_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Presence confirmation
    challenger_joined_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    receiver_joined_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Deadlines
    challenge_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    join_window_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Termination
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ended_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    ended_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)  # completed, expired, cancelled, ...

    __table_args__ = (
        CheckConstraint("challenger_id <> receiver_id", name="chk_match_no_self"),
        CheckConstraint(
            "status IN ('pending','ready','lobby','in_progress','completed','expired','cancelled')",
            name="chk_match_status",
        ),
        CheckConstraint(
            "(status IN ('completed','expired','cancelled')) = (ended_at IS NOT NULL)",
            name="chk_match_ended_at",
        ),
        CheckConstraint(
            "(status = 'in_progress') = (current_player_id IS NOT NULL)",
            name="chk_match_current_player",
        ),
        # One open challenge per pair; rematches are allowed once it resolves
        Index(
            "idx_match_pair_pending",
            "u_lo",
            "u_hi",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_matches_challenger_status", "challenger_id", "status"),
        Index("idx_matches_receiver_status", "receiver_id", "status"),
        Index("idx_matches_challenge_expiry", "challenge_expires_at"),
        Index("idx_matches_join_window", "join_window_expires_at"),
    )

    @property
    def participants(self) -> tuple[uuid.UUID, uuid.UUID]:
        return (self.challenger_id, self.receiver_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def legs_to_win(self) -> int:
        return self.match_format // 2 + 1

    @property
    def visit_number(self) -> int:
        return self.turn_index_in_leg // 2 + 1

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in self.participants

    def opponent_of(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.receiver_id if user_id == self.challenger_id else self.challenger_id

    def player_to_move(self) -> uuid.UUID | None:
        """Leg starter on even turn indices, the other participant on odd ones."""
        if self.leg_starter_id is None:
            return None
        if self.turn_index_in_leg % 2 == 0:
            return self.leg_starter_id
        return self.opponent_of(self.leg_starter_id)

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe view of the row, used for polling responses and the change feed."""
        return {
            "matchId": str(self.id),
            "mode": self.mode,
            "gameType": self.game_type,
            "matchFormat": self.match_format,
            "challengerId": str(self.challenger_id),
            "receiverId": str(self.receiver_id),
            "status": str(self.status),
            "currentPlayerId": _str(self.current_player_id),
            "legStarterId": _str(self.leg_starter_id),
            "scores": dict(self.scores or {}),
            "legsWon": dict(self.legs_won or {}),
            "turnIndex": self.turn_index_in_leg,
            "visit": self.visit_number,
            "leg": self.leg_number,
            "challengerJoinedAt": _iso(self.challenger_joined_at),
            "receiverJoinedAt": _iso(self.receiver_joined_at),
            "challengeExpiresAt": _iso(self.challenge_expires_at),
            "joinWindowExpiresAt": _iso(self.join_window_expires_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "endedAt": _iso(self.ended_at),
            "endedBy": _str(self.ended_by),
            "endedReason": self.ended_reason,
            "lastVisit": self.last_visit_payload,
        }

    def __repr__(self) -> str:
        return (
            f"<Match(id={self.id}, challenger={self.challenger_id}, receiver={self.receiver_id}, "
            f"status={self.status})>"
        )
