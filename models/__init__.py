"""Database models."""

from models.block import UserBlock
from models.event import EventType, MatchEvent
from models.lock import LockStatus, MatchLock
from models.match import LIVE_STATUSES, STATUS_RANK, TERMINAL_STATUSES, Match, MatchStatus

__all__ = [
    "Match",
    "MatchStatus",
    "MatchLock",
    "LockStatus",
    "MatchEvent",
    "EventType",
    "UserBlock",
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "STATUS_RANK",
]
