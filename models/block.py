"""Blocking relationships consulted before a challenge is created."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow


class UserBlock(Base):
    """User `user_id` has blocked `blocked_id`; challenges are refused in both directions."""

    __tablename__ = "user_blocks"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, nullable=False)
    blocked_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_user_blocks_blocked", "blocked_id"),)

    def __repr__(self) -> str:
        return f"<UserBlock(user_id={self.user_id}, blocked_id={self.blocked_id})>"
