"""SQLite persistence layer for Campus Pulse."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .errors import PersistenceError

Connection = sqlite3.Connection
Row = sqlite3.Row

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        avatar_ref TEXT,
        cohort TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS checkins (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE,
        place_name TEXT NOT NULL,
        lat REAL,
        lon REAL,
        status_tag TEXT,
        created_at REAL NOT NULL,
        CHECK ((lat IS NULL) = (lon IS NULL))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_checkins_created ON checkins(created_at)",
    """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        category TEXT,
        creator_id TEXT NOT NULL,
        date REAL,
        poll_kind TEXT,
        poll_closes_at REAL,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event_attendees (
        event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        joined_at REAL NOT NULL,
        PRIMARY KEY (event_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS poll_options (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        label TEXT NOT NULL,
        date REAL,
        location TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS poll_votes (
        event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        option_id TEXT NOT NULL REFERENCES poll_options(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        voted_at REAL NOT NULL,
        PRIMARY KEY (event_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        creator_id TEXT NOT NULL,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback_upvotes (
        feedback_id TEXT NOT NULL REFERENCES feedback(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        voted_at REAL NOT NULL,
        PRIMARY KEY (feedback_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback_comments (
        id TEXT PRIMARY KEY,
        feedback_id TEXT NOT NULL REFERENCES feedback(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at REAL NOT NULL
    )
    """,
)


class Database:
    """Lightweight wrapper around SQLite operations."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Yield a connection for reads; SQLite errors surface as PersistenceError."""
        try:
            conn = sqlite3.connect(self._path)
        except sqlite3.Error as exc:
            raise PersistenceError("persistence failure") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        except sqlite3.Error as exc:
            raise PersistenceError("persistence failure") from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection holding the write lock; commits on success.

        `BEGIN IMMEDIATE` serializes writers, so a delete-then-insert inside
        one transaction is atomic with respect to other writers.
        """
        with self.connect() as conn:
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _initialize(self) -> None:
        with self.connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()

    # region Users
    def upsert_user(self, user: Dict[str, Any]) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO users (id, display_name, avatar_ref, cohort, updated_at)
                VALUES (:id, :display_name, :avatar_ref, :cohort, :updated_at)
                ON CONFLICT(id) DO UPDATE SET
                    display_name=excluded.display_name,
                    avatar_ref=COALESCE(excluded.avatar_ref, users.avatar_ref),
                    cohort=COALESCE(excluded.cohort, users.cohort),
                    updated_at=excluded.updated_at
                """,
                user,
            )
            conn.commit()

    def get_users(self) -> List[Row]:
        with self.connect() as conn:
            cursor = conn.execute("SELECT * FROM users ORDER BY display_name")
            return cursor.fetchall()

    def get_user(self, user_id: str) -> Optional[Row]:
        with self.connect() as conn:
            cursor = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            return cursor.fetchone()

    # endregion


__all__ = ["Database", "Connection", "Row"]
