"""Per-user admission lock for live remote matches."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow


class LockStatus(StrEnum):
    READY = "ready"
    IN_PROGRESS = "in_progress"


class MatchLock(Base):
    """At most one row per user: the primary key is the admission control."""

    __tablename__ = "match_locks"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    match_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lock_status: Mapped[str] = mapped_column(String(16), nullable=False, default=LockStatus.READY)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (CheckConstraint("lock_status IN ('ready','in_progress')", name="chk_lock_status"),)

    def __repr__(self) -> str:
        return f"<MatchLock(user_id={self.user_id}, match_id={self.match_id}, status={self.lock_status})>"
