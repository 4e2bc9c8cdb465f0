"""
auth/logic.py -- Account logic between the login handler and the store.

The web layer never calls UserStore or bcrypt directly for a login; it asks
is_valid_email() first and then authenticate_user().
"""

from __future__ import annotations

import re

from auth.models import EMAIL_PATTERN, User
from auth.store import UserStore
from auth.tokens import dummy_verify, verify_password

_EMAIL_RE = re.compile(EMAIL_PATTERN)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Return the account matching email + password, or None.

    Always runs bcrypt, through dummy_verify() when the email is unknown, so an
    unknown email and a wrong password take the same time.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        dummy_verify(password)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
