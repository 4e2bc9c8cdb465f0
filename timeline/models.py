"""
timeline/models.py -- Domain dataclasses for the timeline.

Pure data containers with zero logic; timeline/store.py does the work.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Post:
    """A message on the timeline.

    author is the poster's username at read time. It is None when the posting
    account no longer exists.

    id is None before the record is written to the database.
    """

    user_id: int
    body: str
    id: int | None = None
    author: str | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
