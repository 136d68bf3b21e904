"""Core modules for the remote match engine."""

from core.config import settings
from core.db import AsyncSessionLocal, Base, engine, get_db
from core.errors import MatchError
from core.redis import close_redis, get_redis

__all__ = ["settings", "Base", "AsyncSessionLocal", "get_db", "engine", "get_redis", "close_redis", "MatchError"]
