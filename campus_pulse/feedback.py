"""Feedback store: suggestions with toggle upvotes and comment threads."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable, List, Optional

from .db import Connection, Database, Row
from .errors import ValidationError
from .membership import MembershipSet
from .models import FEEDBACK_CATEGORIES, Feedback, FeedbackComment, from_epoch, utcnow
from .outcomes import Outcome

MAX_COMMENT = 1000

UPVOTES = MembershipSet("feedback_upvotes", "feedback_id", stamp_column="voted_at")


class FeedbackStore:
    def __init__(self, database: Database, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.database = database
        self._clock = clock

    def create(self, creator_id: str, title: str, description: str = "", category: str = "other") -> Feedback:
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")
        if category not in FEEDBACK_CATEGORIES:
            raise ValidationError(f"category must be one of: {', '.join(FEEDBACK_CATEGORIES)}")

        feedback_id = str(uuid.uuid4())
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO feedback (id, title, description, category, status, creator_id, created_at)
                VALUES (?, ?, ?, ?, 'pending', ?, ?)
                """,
                (feedback_id, title, (description or "").strip(), category, creator_id, self._clock().timestamp()),
            )
            return self._load(conn, feedback_id)

    def list_all(self) -> List[Feedback]:
        with self.database.connect() as conn:
            rows = conn.execute("SELECT * FROM feedback ORDER BY created_at DESC, rowid DESC").fetchall()
            return [self._from_row(conn, row) for row in rows]

    def toggle_upvote(self, feedback_id: str, user_id: str) -> Optional[bool]:
        """Flip the caller's upvote; returns whether it is now set, None if missing."""
        with self.database.transaction() as conn:
            if not _exists(conn, feedback_id):
                return None
            return UPVOTES.toggle(conn, feedback_id, user_id, self._clock().timestamp())

    def add_comment(self, feedback_id: str, user_id: str, content: str) -> Optional[FeedbackComment]:
        content = (content or "").strip()
        if not content:
            raise ValidationError("comment cannot be empty")
        if len(content) > MAX_COMMENT:
            raise ValidationError(f"comment must be at most {MAX_COMMENT} characters")

        comment = FeedbackComment(
            id=str(uuid.uuid4()),
            feedback_id=feedback_id,
            user_id=user_id,
            content=content,
            created_at=self._clock(),
        )
        with self.database.transaction() as conn:
            if not _exists(conn, feedback_id):
                return None
            conn.execute(
                """
                INSERT INTO feedback_comments (id, feedback_id, user_id, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (comment.id, feedback_id, user_id, content, comment.created_at.timestamp()),
            )
        return comment

    def remove(self, feedback_id: str, requesting_user_id: str) -> Outcome:
        with self.database.transaction() as conn:
            row = conn.execute("SELECT creator_id FROM feedback WHERE id = ?", (feedback_id,)).fetchone()
            if row is None:
                return Outcome.NOT_FOUND
            if row["creator_id"] != requesting_user_id:
                return Outcome.FORBIDDEN
            conn.execute("DELETE FROM feedback WHERE id = ?", (feedback_id,))
            return Outcome.OK

    def _load(self, conn: Connection, feedback_id: str) -> Optional[Feedback]:
        row = conn.execute("SELECT * FROM feedback WHERE id = ?", (feedback_id,)).fetchone()
        return self._from_row(conn, row) if row else None

    def _from_row(self, conn: Connection, row: Row) -> Feedback:
        comments = [
            FeedbackComment(
                id=c["id"],
                feedback_id=c["feedback_id"],
                user_id=c["user_id"],
                content=c["content"],
                created_at=from_epoch(c["created_at"]),
            )
            for c in conn.execute(
                "SELECT * FROM feedback_comments WHERE feedback_id = ? ORDER BY created_at, rowid",
                (row["id"],),
            )
        ]
        return Feedback(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            status=row["status"],
            creator_id=row["creator_id"],
            created_at=from_epoch(row["created_at"]),
            upvoter_ids=UPVOTES.members(conn, row["id"]),
            comments=comments,
        )


def _exists(conn: Connection, feedback_id: str) -> bool:
    return conn.execute("SELECT 1 FROM feedback WHERE id = ?", (feedback_id,)).fetchone() is not None


__all__ = ["FeedbackStore"]
