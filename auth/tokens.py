"""
auth/tokens.py -- Password hashing, session tickets and the auth cookie.

Security design decisions:
  Passwords: bcrypt, used directly. Bcrypt's cost factor makes brute-force
       expensive for low-entropy secrets. dummy_verify() enables timing
       equalization in auth.logic.authenticate_user() so response time does
       not reveal whether an email has an account.

  Session tickets: a SessionTicket is encoded as an HS256 JWT (python-jose)
       signed with SECRET_KEY. Claims:
         sub        -- account identity (email)
         iat / exp  -- issue time and expiry (issue + SESSION_MINUTES)
         persistent -- the "remember me" choice
         user_data  -- JSON snapshot of the account, password hash excluded
       Decoding returns None on any failure; the caller treats that as
       "not logged in".

  Cookie: httpOnly, samesite=lax, secure when SECURE_COOKIES=true. Its
       Expires attribute equals the ticket expiry and its path comes from
       AUTH_COOKIE_PATH, so cookie and ticket lapse together.

Layer rule: no imports from api/, web/, or timeline/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import SessionTicket, User
from core.config import get_settings

logger = logging.getLogger("ict4events.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at import so the first failed login is not measurably faster.
_DUMMY_HASH: str = hash_password("ict4events_timing_dummy")


def dummy_verify(plain: str) -> None:
    """Spend one bcrypt check on a throwaway hash. Used when there is no account to check against."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Account snapshot
# ---------------------------------------------------------------------------


def snapshot_user(user: User) -> str:
    """Serialize an account for the ticket. The password hash is dropped."""
    data = asdict(user)
    data.pop("hashed_password", None)
    return json.dumps(data)


def user_from_snapshot(user_data: str) -> User | None:
    try:
        data = json.loads(user_data)
        return User(**data)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Session tickets
# ---------------------------------------------------------------------------


def issue_ticket(user: User, persistent: bool = False, now: datetime | None = None) -> SessionTicket:
    """Build a ticket for user valid for SESSION_MINUTES from now.

    The window is the same whether or not the ticket is persistent; the
    persistent flag only travels with the ticket.
    """
    issued = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    return SessionTicket(
        name=user.email,
        issued_at=issued,
        expires_at=issued + timedelta(minutes=_settings.session_minutes),
        persistent=persistent,
        user_data=snapshot_user(user),
    )


def encode_ticket(ticket: SessionTicket) -> str:
    payload = {
        "sub": ticket.name,
        "iat": int(ticket.issued_at.timestamp()),
        "exp": int(ticket.expires_at.timestamp()),
        "persistent": ticket.persistent,
        "user_data": ticket.user_data,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_ticket(token: str) -> SessionTicket | None:
    """Verify and decode a ticket. Returns None if invalid, expired or incomplete."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "sub" not in payload or "user_data" not in payload or "iat" not in payload:
        return None
    return SessionTicket(
        name=payload["sub"],
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        persistent=bool(payload.get("persistent", False)),
        user_data=payload["user_data"],
    )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, ticket: SessionTicket) -> None:
    """Write the encoded ticket as the auth cookie, expiring with the ticket."""
    response.set_cookie(
        _settings.auth_cookie_name,
        value=encode_ticket(ticket),
        expires=ticket.expires_at,
        path=_settings.auth_cookie_path,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(_settings.auth_cookie_name, path=_settings.auth_cookie_path)
