"""
auth/dependencies.py -- Resolve the logged-in account from the request.

The session cookie carries a signed ticket with a snapshot of the account
(see auth/tokens.py), so resolving the current user costs no database call.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 for API-style callers.

Layer rule: no imports from web/ or timeline/. This module may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import decode_ticket, user_from_snapshot
from core.config import get_settings


def try_get_current_user(request: Request) -> User | None:
    """Return the account from the auth cookie, or None if absent or invalid. Never raises."""
    token = request.cookies.get(get_settings().auth_cookie_name)
    if not token:
        return None
    ticket = decode_ticket(token)
    if ticket is None:
        return None
    return user_from_snapshot(ticket.user_data)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request carries no valid ticket."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
