from __future__ import annotations

from socialbridge.db.base import Base, utcnow
from socialbridge.db.session import async_session_maker, engine, get_async_session, init_models

__all__ = ["Base", "utcnow", "engine", "async_session_maker", "get_async_session", "init_models"]
