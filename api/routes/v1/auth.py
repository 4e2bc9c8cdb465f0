"""
api/routes/v1/auth.py -- Session identity endpoint.

Routes:
  GET /api/v1/auth/me -- identity of the current session (requires auth)

The browser login itself is a form post handled by web/routes.py; this
router only exposes what the ticket already carries, for script clients of
the web UI.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import MeResponse
from auth.dependencies import get_current_user
from auth.models import User

router = APIRouter()


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        username=current_user.username,
        name=current_user.name,
        role=current_user.role,
    )
