from __future__ import annotations

from socialbridge.schemas.user import UserRead

__all__ = ["UserRead"]
