"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps the
data layer's string rows into these; routes and the ticket code read them.

Layer rule: no imports from api/, web/, or timeline/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


@dataclass
class User:
    """An account on the site.

    email is the login identity and is unique. hashed_password is a bcrypt
    hash and never leaves the server: the session snapshot omits it.
    """

    email: str
    username: str
    name: str = ""
    role: str = "visitor"  # "admin", "employee", "visitor"
    id: int | None = None
    hashed_password: str | None = None
    created_at: str = ""
    last_login: str = ""


@dataclass
class SessionTicket:
    """The authenticated session carried in the auth cookie.

    name is the account identity (email). user_data is the JSON snapshot of
    the account taken at login, so later requests need no database lookup.
    persistent records the "remember me" choice.
    """

    name: str
    issued_at: datetime
    expires_at: datetime
    persistent: bool
    user_data: str
