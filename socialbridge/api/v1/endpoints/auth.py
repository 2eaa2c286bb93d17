from __future__ import annotations

from fastapi import APIRouter, Depends

from socialbridge.api.v1.deps import get_current_user
from socialbridge.db.models.user import User
from socialbridge.schemas.user import UserRead

router = APIRouter()


@router.get("/me", response_model=UserRead)
async def read_me(user: User = Depends(get_current_user)):
    """Return the user behind the bearer session token."""
    return user
