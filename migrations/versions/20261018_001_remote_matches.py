"""Remote matches: matches, match_locks, match_events, user_blocks

Revision ID: 20261018_001
Revises:
Create Date: 2026-10-18 10:00:00

Notes:
    - match_locks.user_id is the primary key: a user holds at most one lock,
      which is what admission control relies on.
    - idx_match_pair_pending allows one open challenge per unordered pair
      while still allowing rematches once it resolves.
    - match_events is the transactional outbox read by the feed relay.

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261018_001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create matches table
    op.create_table(
        "matches",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("mode", sa.String(length=8), nullable=False),
        sa.Column("game_type", sa.String(length=16), nullable=False),
        sa.Column("match_format", sa.Integer(), nullable=False),
        sa.Column("challenger_id", sa.Uuid(), nullable=False),
        sa.Column("receiver_id", sa.Uuid(), nullable=False),
        sa.Column("u_lo", sa.Uuid(), nullable=False),
        sa.Column("u_hi", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("current_player_id", sa.Uuid(), nullable=True),
        sa.Column("leg_starter_id", sa.Uuid(), nullable=True),
        sa.Column("scores", postgresql.JSONB(), nullable=False),
        sa.Column("legs_won", postgresql.JSONB(), nullable=False),
        sa.Column("turn_index_in_leg", sa.Integer(), nullable=False),
        sa.Column("leg_number", sa.Integer(), nullable=False),
        sa.Column("last_visit_payload", postgresql.JSONB(), nullable=True),
        sa.Column("challenger_joined_at", sa.DateTime(), nullable=True),
        sa.Column("receiver_joined_at", sa.DateTime(), nullable=True),
        sa.Column("challenge_expires_at", sa.DateTime(), nullable=True),
        sa.Column("join_window_expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("ended_by", sa.Uuid(), nullable=True),
        sa.Column("ended_reason", sa.String(length=32), nullable=True),
        sa.CheckConstraint("challenger_id <> receiver_id", name="chk_match_no_self"),
        sa.CheckConstraint(
            "status IN ('pending','ready','lobby','in_progress','completed','expired','cancelled')",
            name="chk_match_status",
        ),
        sa.CheckConstraint(
            "(status IN ('completed','expired','cancelled')) = (ended_at IS NOT NULL)",
            name="chk_match_ended_at",
        ),
        sa.CheckConstraint(
            "(status = 'in_progress') = (current_player_id IS NOT NULL)",
            name="chk_match_current_player",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_matches_challenger_id"), "matches", ["challenger_id"], unique=False)
    op.create_index(op.f("ix_matches_receiver_id"), "matches", ["receiver_id"], unique=False)
    op.create_index("idx_matches_challenger_status", "matches", ["challenger_id", "status"], unique=False)
    op.create_index("idx_matches_receiver_status", "matches", ["receiver_id", "status"], unique=False)
    op.create_index("idx_matches_challenge_expiry", "matches", ["challenge_expires_at"], unique=False)
    op.create_index("idx_matches_join_window", "matches", ["join_window_expires_at"], unique=False)
    op.execute(
        """
        CREATE UNIQUE INDEX idx_match_pair_pending
        ON matches(u_lo, u_hi)
        WHERE status = 'pending';
    """
    )

    # Create match_locks table
    op.create_table(
        "match_locks",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("match_id", sa.Uuid(), nullable=False),
        sa.Column("lock_status", sa.String(length=16), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("lock_status IN ('ready','in_progress')", name="chk_lock_status"),
        sa.ForeignKeyConstraint(["match_id"], ["matches.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(op.f("ix_match_locks_match_id"), "match_locks", ["match_id"], unique=False)

    # Create match_events table (outbox)
    op.create_table(
        "match_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("match_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_match_events_match_id"), "match_events", ["match_id"], unique=False)
    op.execute(
        """
        CREATE INDEX idx_match_events_unpublished
        ON match_events(id)
        WHERE published_at IS NULL;
    """
    )

    # Create user_blocks table
    op.create_table(
        "user_blocks",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("blocked_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "blocked_id"),
    )
    op.create_index("idx_user_blocks_blocked", "user_blocks", ["blocked_id"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_user_blocks_blocked", table_name="user_blocks")
    op.drop_table("user_blocks")

    op.drop_index("idx_match_events_unpublished", table_name="match_events")
    op.drop_index(op.f("ix_match_events_match_id"), table_name="match_events")
    op.drop_table("match_events")

    op.drop_index(op.f("ix_match_locks_match_id"), table_name="match_locks")
    op.drop_table("match_locks")

    op.drop_index("idx_match_pair_pending", table_name="matches")
    op.drop_index("idx_matches_join_window", table_name="matches")
    op.drop_index("idx_matches_challenge_expiry", table_name="matches")
    op.drop_index("idx_matches_receiver_status", table_name="matches")
    op.drop_index("idx_matches_challenger_status", table_name="matches")
    op.drop_index(op.f("ix_matches_receiver_id"), table_name="matches")
    op.drop_index(op.f("ix_matches_challenger_id"), table_name="matches")
    op.drop_table("matches")
