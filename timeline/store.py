"""
timeline/store.py -- Post repository over the stored-procedure data layer.

Pattern: Repository + Data Mapper (same as auth/store.py). Reads use the
dictionary form of the data layer because the author column comes from an
outer join and may be NULL; the dictionary reader hands NULL back as None
instead of rendering it as "".

Usage:
    store = TimelineStore(database)
    post_id = store.create_post(Post(user_id=1, body="Hello"))
    posts = store.list_posts(limit=50)
    store.delete_post(post_id, user_id=1)
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text

from data.database import Database
from data.procedures import Direction, Parameter, Procedure
from timeline.models import Post

MAX_POST_LENGTH = 500

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

posts = Table(
    "posts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("body", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

# ---------------------------------------------------------------------------
# Procedures
# ---------------------------------------------------------------------------

PROCEDURES = (
    Procedure(
        "GET_TIMELINE_POSTS",
        "SELECT p.id, p.user_id, u.username AS author, p.body, p.created_at "
        "FROM posts p LEFT JOIN users u ON u.id = p.user_id "
        "ORDER BY p.created_at DESC, p.id DESC LIMIT :p_limit",
    ),
    Procedure(
        "INSERT_POST",
        "INSERT INTO posts (user_id, body, created_at) VALUES (:p_user_id, :p_body, :p_created_at)",
        outputs={"p_post_id": "SELECT last_insert_rowid()"},
    ),
    # Status is -1 when nothing was deleted: unknown post or not the owner.
    Procedure(
        "DELETE_POST",
        "DELETE FROM posts WHERE id = :p_post_id AND user_id = :p_user_id",
        outputs={"p_status": "SELECT CASE WHEN changes() > 0 THEN changes() ELSE -1 END"},
    ),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TimelineStore:
    def __init__(self, database: Database) -> None:
        self.db = database
        metadata.create_all(database.engine)
        database.catalog.register(*PROCEDURES)

    def list_posts(self, limit: int = 50) -> list[Post] | None:
        """Newest posts first. None if the query failed, [] if there are none."""
        rows = self.db.execute_reader_dict("GET_TIMELINE_POSTS", [Parameter("p_limit", limit)])
        if rows is None:
            return None
        return [_row_to_post(r) for r in rows]

    def create_post(self, post: Post) -> int | None:
        """Insert a post and return its id, or None on failure."""
        new_id = Parameter("p_post_id", direction=Direction.RETURN_VALUE)
        ok, returned = self.db.execute_non_query_returning(
            "INSERT_POST",
            [
                new_id,
                Parameter("p_user_id", post.user_id),
                Parameter("p_body", post.body),
                Parameter("p_created_at", _now_iso()),
            ],
        )
        if not ok or not returned:
            return None
        return int(returned)

    def delete_post(self, post_id: int, user_id: int) -> bool:
        """Delete a post owned by user_id. False if not found, not owned, or failed."""
        return self.db.execute_non_query(
            "DELETE_POST",
            [
                Parameter("p_status", direction=Direction.OUT),
                Parameter("p_post_id", post_id),
                Parameter("p_user_id", user_id),
            ],
        )


def _row_to_post(row: dict[str, str | None]) -> Post:
    return Post(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        author=row["author"],
        body=row["body"] or "",
        created_at=row["created_at"] or "",
    )
