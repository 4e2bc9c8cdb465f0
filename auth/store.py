"""
auth/store.py -- Account repository over the stored-procedure data layer.

Pattern: Repository + Data Mapper (same as timeline/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and logic code
never touches SQL or procedure names directly.

The users table is declared with SQLAlchemy Core so create_all() can build it
on first start-up; every read and write after that goes through the
procedures registered below, via data.database.Database.

Result rows come back as lists of strings (see Database.execute_reader), so
the mapper relies on column positions matching _USER_COLUMNS.

Layer rule: no imports from api/, web/, or timeline/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text

from auth.models import User
from data.database import Database, SuccessCriterion
from data.procedures import Direction, Parameter, Procedure

logger = logging.getLogger("ict4events.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(100), nullable=False),
    Column("name", String(255)),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="visitor"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# ---------------------------------------------------------------------------
# Procedures
# ---------------------------------------------------------------------------

_USER_COLUMNS = "id, email, username, name, hashed_password, role, created_at, last_login"
_USER_TYPES = {c.name: c.type for c in users.columns}

PROCEDURES = (
    Procedure(
        "GET_USER_BY_EMAIL",
        f"SELECT {_USER_COLUMNS} FROM users WHERE email = :p_email",
        columns=_USER_TYPES,
    ),
    Procedure(
        "GET_USER_BY_ID",
        f"SELECT {_USER_COLUMNS} FROM users WHERE id = :p_user_id",
        columns=_USER_TYPES,
    ),
    Procedure(
        "INSERT_USER",
        "INSERT INTO users (email, username, name, hashed_password, role, created_at) "
        "VALUES (:p_email, :p_username, :p_name, :p_hashed_password, :p_role, :p_created_at)",
        outputs={"p_user_id": "SELECT last_insert_rowid()"},
    ),
    Procedure(
        "UPDATE_LAST_LOGIN",
        "UPDATE users SET last_login = :p_last_login WHERE id = :p_user_id",
        outputs={"p_status": "SELECT CASE WHEN changes() > 0 THEN changes() ELSE -1 END"},
    ),
    Procedure("COUNT_USERS", "SELECT COUNT(*) FROM users"),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User accounts.

    Usage:
        store = UserStore(Database("sqlite:///ict4events.db"))
        store.create_user(User(email="a@b.nl", username="a", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@b.nl")
    """

    def __init__(self, database: Database) -> None:
        self.db = database
        metadata.create_all(database.engine)
        database.catalog.register(*PROCEDURES)

    def has_users(self) -> bool:
        return (self.db.execute_scalar("COUNT_USERS") or 0) > 0

    def create_user(self, user: User) -> int | None:
        """Insert a new account and return its id, or None if the insert failed.

        A duplicate email is a database fault (UNIQUE constraint) and so also
        yields None.
        """
        new_id = Parameter("p_user_id", direction=Direction.RETURN_VALUE)
        ok, returned = self.db.execute_non_query_returning(
            "INSERT_USER",
            [
                new_id,
                Parameter("p_email", user.email),
                Parameter("p_username", user.username),
                Parameter("p_name", user.name),
                Parameter("p_hashed_password", user.hashed_password),
                Parameter("p_role", user.role),
                Parameter("p_created_at", _now_iso()),
            ],
        )
        if not ok or not returned:
            return None
        return int(returned)

    def get_by_email(self, email: str) -> User | None:
        """Look up an account by exact email. None if absent or the query failed."""
        rows = self.db.execute_reader("GET_USER_BY_EMAIL", [Parameter("p_email", email)])
        if not rows:
            return None
        return _row_to_user(rows[0])

    def get_by_id(self, user_id: int) -> User | None:
        rows = self.db.execute_reader("GET_USER_BY_ID", [Parameter("p_user_id", user_id)])
        if not rows:
            return None
        return _row_to_user(rows[0])

    def update_last_login(self, user_id: int) -> bool:
        """Stamp last_login. False if the account does not exist."""
        return self.db.execute_non_query(
            "UPDATE_LAST_LOGIN",
            [
                Parameter("p_status", direction=Direction.OUT),
                Parameter("p_user_id", user_id),
                Parameter("p_last_login", _now_iso()),
            ],
            success=SuccessCriterion.STATUS_PARAMETER,
        )


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row: list[str]) -> User:
    # NULL text columns arrive as "", so an account without a password hash
    # (not settable through the site) maps back to None here.
    user_id, email, username, name, hashed_password, role, created_at, last_login = row
    return User(
        id=int(user_id),
        email=email,
        username=username,
        name=name,
        hashed_password=hashed_password or None,
        role=role,
        created_at=created_at,
        last_login=last_login,
    )
