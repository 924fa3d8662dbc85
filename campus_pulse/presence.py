"""Presence store: one live check-in per user, expiring after a TTL."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from .db import Database, Row
from .errors import ValidationError
from .models import (
    UNLOCATED,
    CheckIn,
    Coordinates,
    Located,
    Unlocated,
    User,
    from_epoch,
    utcnow,
)

MAX_PLACE_NAME = 120
MAX_STATUS_TAG = 32

_SELECT_CHECKINS = """
    SELECT c.*, u.display_name, u.avatar_ref, u.cohort
    FROM checkins c
    LEFT JOIN users u ON u.id = c.user_id
"""


class PresenceStore:
    """Owns check-in records.

    Writing a check-in replaces any earlier one from the same user inside a
    single write transaction. Concurrent reports from one user are
    last-writer-wins: nothing detects a stale write.
    """

    def __init__(
        self,
        database: Database,
        *,
        ttl: timedelta = timedelta(hours=24),
        ghost_status: str = "👻",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.ttl = ttl
        self.ghost_status = ghost_status
        self._clock = clock

    def _cutoff(self) -> float:
        return (self._clock() - self.ttl).timestamp()

    def report(
        self,
        user_id: str,
        place_name: str,
        coordinates: Coordinates = UNLOCATED,
        status_tag: str | None = None,
    ) -> CheckIn:
        place_name = _clean_place_name(place_name)
        status_tag = _clean_status_tag(status_tag)
        if not isinstance(coordinates, (Located, Unlocated)):
            raise ValidationError("coordinates must be Located or Unlocated")

        lat, lon = (coordinates.lat, coordinates.lon) if isinstance(coordinates, Located) else (None, None)
        checkin_id = str(uuid.uuid4())
        created_at = self._clock()
        with self.database.transaction() as conn:
            conn.execute("DELETE FROM checkins WHERE user_id = ?", (user_id,))
            conn.execute(
                """
                INSERT INTO checkins (id, user_id, place_name, lat, lon, status_tag, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (checkin_id, user_id, place_name, lat, lon, status_tag, created_at.timestamp()),
            )
            row = conn.execute(_SELECT_CHECKINS + " WHERE c.id = ?", (checkin_id,)).fetchone()
        return _checkin_from_row(row)

    def update_status(self, checkin_id: str, user_id: str, status_tag: str | None) -> bool:
        """Change the status tag in place; False if the record is gone or not owned."""
        status_tag = _clean_status_tag(status_tag)
        with self.database.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE checkins SET status_tag = ?
                WHERE id = ? AND user_id = ? AND created_at >= ?
                """,
                (status_tag, checkin_id, user_id, self._cutoff()),
            )
            return cursor.rowcount == 1

    def list_active(self, requesting_user_id: str | None, cohort: str | None = None) -> List[CheckIn]:
        """Active check-ins visible to `requesting_user_id`, newest first."""
        return self.visible_to(self.all_active(cohort), requesting_user_id)

    def all_active(self, cohort: str | None = None) -> List[CheckIn]:
        """Every unexpired check-in, ghosts included, newest first."""
        query = _SELECT_CHECKINS + " WHERE c.created_at >= ?"
        params: list = [self._cutoff()]
        if cohort:
            query += " AND u.cohort = ?"
            params.append(cohort)
        query += " ORDER BY c.created_at DESC, c.rowid DESC"
        with self.database.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_checkin_from_row(row) for row in rows]

    def visible_to(self, checkins: Iterable[CheckIn], viewer_id: str | None) -> List[CheckIn]:
        """Drop ghost-tagged check-ins except the viewer's own."""
        return [
            checkin
            for checkin in checkins
            if checkin.status_tag != self.ghost_status or checkin.user_id == viewer_id
        ]

    def get_for_user(self, user_id: str) -> Optional[CheckIn]:
        with self.database.connect() as conn:
            row = conn.execute(
                _SELECT_CHECKINS + " WHERE c.user_id = ? AND c.created_at >= ?",
                (user_id, self._cutoff()),
            ).fetchone()
        return _checkin_from_row(row) if row else None

    def remove(self, checkin_id: str, user_id: str) -> bool:
        """Check out: delete the caller's own record."""
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM checkins WHERE id = ? AND user_id = ?",
                (checkin_id, user_id),
            )
            return cursor.rowcount == 1

    def purge_expired(self) -> int:
        with self.database.transaction() as conn:
            cursor = conn.execute("DELETE FROM checkins WHERE created_at < ?", (self._cutoff(),))
            return cursor.rowcount


def _clean_place_name(place_name: str) -> str:
    if not isinstance(place_name, str) or not place_name.strip():
        raise ValidationError("place name is required")
    place_name = place_name.strip()
    if len(place_name) > MAX_PLACE_NAME:
        raise ValidationError(f"place name must be at most {MAX_PLACE_NAME} characters")
    return place_name


def _clean_status_tag(status_tag: str | None) -> str | None:
    if status_tag is None:
        return None
    status_tag = status_tag.strip()
    if len(status_tag) > MAX_STATUS_TAG:
        raise ValidationError(f"status tag must be at most {MAX_STATUS_TAG} characters")
    return status_tag or None


def _checkin_from_row(row: Row) -> CheckIn:
    coordinates: Coordinates = UNLOCATED
    if row["lat"] is not None:
        coordinates = Located(lat=row["lat"], lon=row["lon"])
    user = None
    if row["display_name"] is not None:
        user = User(
            id=row["user_id"],
            display_name=row["display_name"],
            avatar_ref=row["avatar_ref"],
            cohort=row["cohort"],
        )
    return CheckIn(
        id=row["id"],
        user_id=row["user_id"],
        place_name=row["place_name"],
        coordinates=coordinates,
        status_tag=row["status_tag"],
        created_at=from_epoch(row["created_at"]),
        user=user,
    )


__all__ = ["PresenceStore"]
