"""Event store: attendance sets and embedded date/location polls."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from .db import Connection, Database, Row
from .errors import ValidationError
from .membership import ExclusiveChoice, MembershipSet
from .models import POLL_KINDS, Event, Poll, PollOption, from_epoch, utcnow
from .outcomes import Outcome

MAX_TITLE = 120
MAX_POLL_OPTIONS = 10

ATTENDEES = MembershipSet("event_attendees", "event_id", stamp_column="joined_at")
POLL_VOTES = ExclusiveChoice("poll_votes", "event_id", "option_id", stamp_column="voted_at")


@dataclass(slots=True)
class PollOptionDraft:
    label: str
    date: datetime | None = None
    location: str | None = None


@dataclass(slots=True)
class PollDraft:
    poll_kind: str
    options: Sequence[PollOptionDraft]
    closes_at: datetime | None = None


class EventStore:
    """Owns events, their attendees and their polls.

    An event is Undetermined while its date is null (a poll decides it) and
    Fixed once a date is set. Votes are refused on Fixed events.
    """

    def __init__(self, database: Database, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.database = database
        self._clock = clock

    def create(
        self,
        creator_id: str,
        title: str,
        description: str = "",
        category: str | None = None,
        date: datetime | None = None,
        poll: PollDraft | None = None,
    ) -> Event:
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")
        if len(title) > MAX_TITLE:
            raise ValidationError(f"title must be at most {MAX_TITLE} characters")
        if poll is not None and date is not None:
            raise ValidationError("an event with a poll cannot also have a fixed date")
        if poll is None and date is None:
            raise ValidationError("date is required unless a poll is attached")
        if poll is not None:
            _validate_poll(poll)

        event_id = str(uuid.uuid4())
        now = self._clock().timestamp()
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO events (id, title, description, category, creator_id, date,
                                    poll_kind, poll_closes_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event_id,
                    title,
                    (description or "").strip(),
                    category,
                    creator_id,
                    date.timestamp() if date else None,
                    poll.poll_kind if poll else None,
                    poll.closes_at.timestamp() if poll and poll.closes_at else None,
                    now,
                ),
            )
            if poll is not None:
                conn.executemany(
                    """
                    INSERT INTO poll_options (id, event_id, position, label, date, location)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            str(uuid.uuid4()),
                            event_id,
                            position,
                            option.label.strip(),
                            option.date.timestamp() if option.date else None,
                            option.location,
                        )
                        for position, option in enumerate(poll.options)
                    ],
                )
            ATTENDEES.add(conn, event_id, creator_id, now)
            return self._load(conn, event_id)

    def get(self, event_id: str) -> Optional[Event]:
        with self.database.connect() as conn:
            return self._load(conn, event_id)

    def list_all(self) -> List[Event]:
        """Fixed events by date, then undetermined ones, newest first."""
        with self.database.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                ORDER BY date IS NULL, date ASC, created_at DESC
                """
            ).fetchall()
            return self._assemble(conn, rows)

    def attend(self, event_id: str, user_id: str) -> Outcome:
        with self.database.transaction() as conn:
            if not _exists(conn, event_id):
                return Outcome.NOT_FOUND
            if not ATTENDEES.add(conn, event_id, user_id, self._clock().timestamp()):
                return Outcome.ALREADY_ATTENDING
            return Outcome.OK

    def unattend(self, event_id: str, user_id: str) -> Outcome:
        with self.database.transaction() as conn:
            row = conn.execute("SELECT creator_id FROM events WHERE id = ?", (event_id,)).fetchone()
            if row is None:
                return Outcome.NOT_FOUND
            if row["creator_id"] == user_id:
                return Outcome.CREATOR_CANNOT_LEAVE
            if not ATTENDEES.remove(conn, event_id, user_id):
                return Outcome.NOT_ATTENDING
            return Outcome.OK

    def vote(self, event_id: str, option_id: str, user_id: str) -> Outcome:
        """Move the voter's single vote in this event's poll to `option_id`."""
        now = self._clock()
        with self.database.transaction() as conn:
            row = conn.execute(
                "SELECT date, poll_kind, poll_closes_at FROM events WHERE id = ?",
                (event_id,),
            ).fetchone()
            if row is None:
                return Outcome.NOT_FOUND
            if row["poll_kind"] is None:
                return Outcome.NO_POLL
            if row["date"] is not None:
                return Outcome.POLL_LOCKED
            if row["poll_closes_at"] is not None and now.timestamp() >= row["poll_closes_at"]:
                return Outcome.POLL_CLOSED
            option = conn.execute(
                "SELECT 1 FROM poll_options WHERE id = ? AND event_id = ?",
                (option_id, event_id),
            ).fetchone()
            if option is None:
                return Outcome.UNKNOWN_OPTION
            POLL_VOTES.choose(conn, event_id, option_id, user_id, now.timestamp())
            return Outcome.OK

    def update(
        self,
        event_id: str,
        requesting_user_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        category: str | None = None,
        date: datetime | None = None,
    ) -> Outcome:
        """Creator-only edit. Setting a date on an undetermined event fixes it."""
        changes: Dict[str, object] = {}
        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationError("title cannot be empty")
            changes["title"] = title
        if description is not None:
            changes["description"] = description.strip()
        if category is not None:
            changes["category"] = category
        if date is not None:
            changes["date"] = date.timestamp()

        with self.database.transaction() as conn:
            row = conn.execute("SELECT creator_id FROM events WHERE id = ?", (event_id,)).fetchone()
            if row is None:
                return Outcome.NOT_FOUND
            if row["creator_id"] != requesting_user_id:
                return Outcome.FORBIDDEN
            if changes:
                assignments = ", ".join(f"{column} = ?" for column in changes)
                conn.execute(
                    f"UPDATE events SET {assignments} WHERE id = ?",
                    (*changes.values(), event_id),
                )
            return Outcome.OK

    def remove(self, event_id: str, requesting_user_id: str) -> Outcome:
        """Creator-only delete; attendees, options and votes cascade."""
        with self.database.transaction() as conn:
            row = conn.execute("SELECT creator_id FROM events WHERE id = ?", (event_id,)).fetchone()
            if row is None:
                return Outcome.NOT_FOUND
            if row["creator_id"] != requesting_user_id:
                return Outcome.FORBIDDEN
            conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
            return Outcome.OK

    # region Loading
    def _load(self, conn: Connection, event_id: str) -> Optional[Event]:
        row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        if row is None:
            return None
        return self._assemble(conn, [row])[0]

    def _assemble(self, conn: Connection, rows: List[Row]) -> List[Event]:
        events: List[Event] = []
        for row in rows:
            event_id = row["id"]
            poll = None
            if row["poll_kind"] is not None:
                poll = Poll(
                    poll_kind=row["poll_kind"],
                    options=_load_options(conn, event_id),
                    closes_at=from_epoch(row["poll_closes_at"]) if row["poll_closes_at"] else None,
                )
            events.append(
                Event(
                    id=event_id,
                    title=row["title"],
                    description=row["description"],
                    category=row["category"],
                    creator_id=row["creator_id"],
                    date=from_epoch(row["date"]) if row["date"] is not None else None,
                    attendee_ids=ATTENDEES.members(conn, event_id),
                    poll=poll,
                    created_at=from_epoch(row["created_at"]),
                )
            )
        return events

    # endregion


def _exists(conn: Connection, event_id: str) -> bool:
    return conn.execute("SELECT 1 FROM events WHERE id = ?", (event_id,)).fetchone() is not None


def _load_options(conn: Connection, event_id: str) -> List[PollOption]:
    options = {
        row["id"]: PollOption(
            id=row["id"],
            label=row["label"],
            date=from_epoch(row["date"]) if row["date"] is not None else None,
            location=row["location"],
        )
        for row in conn.execute(
            "SELECT * FROM poll_options WHERE event_id = ? ORDER BY position",
            (event_id,),
        )
    }
    for vote in conn.execute(
        "SELECT option_id, user_id FROM poll_votes WHERE event_id = ? ORDER BY voted_at, rowid",
        (event_id,),
    ):
        options[vote["option_id"]].voter_ids.append(vote["user_id"])
    return list(options.values())


def _validate_poll(poll: PollDraft) -> None:
    if poll.poll_kind not in POLL_KINDS:
        raise ValidationError(f"poll kind must be one of: {', '.join(POLL_KINDS)}")
    if not 2 <= len(poll.options) <= MAX_POLL_OPTIONS:
        raise ValidationError(f"a poll needs between 2 and {MAX_POLL_OPTIONS} options")
    for option in poll.options:
        if not option.label or not option.label.strip():
            raise ValidationError("every poll option needs a label")
        if poll.poll_kind == "date" and option.date is None:
            raise ValidationError("date poll options need a date")


__all__ = ["EventStore", "PollDraft", "PollOptionDraft", "ATTENDEES", "POLL_VOTES"]
