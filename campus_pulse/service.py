"""Core orchestration logic for Campus Pulse."""

from __future__ import annotations

import csv
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .auth import Principal
from .config import Settings
from .db import Database
from .errors import PersistenceError
from .events import EventStore, PollDraft
from .feedback import FeedbackStore
from .models import CheckIn, Coordinates, Event, Feedback, FeedbackComment, User
from .outcomes import Outcome
from .presence import PresenceStore
from .realtime import Broadcaster

logger = logging.getLogger(__name__)


class CampusPulseService:
    """Runs store mutations and pushes a fresh snapshot after each success."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        presence: PresenceStore,
        events: EventStore,
        feedback: FeedbackStore,
        broadcaster: Broadcaster,
    ) -> None:
        self.settings = settings
        self.database = database
        self.presence = presence
        self.events = events
        self.feedback = feedback
        self.broadcaster = broadcaster

    @classmethod
    def from_settings(cls, settings: Settings, broadcaster: Broadcaster | None = None) -> "CampusPulseService":
        database = Database(settings.database_path)
        return cls(
            settings,
            database,
            PresenceStore(
                database,
                ttl=timedelta(hours=settings.checkin_ttl_hours),
                ghost_status=settings.ghost_status,
            ),
            EventStore(database),
            FeedbackStore(database),
            broadcaster or Broadcaster(),
        )

    # region Users
    def sync_roster(self) -> int:
        roster_path = self.settings.roster_path
        if not roster_path.exists():
            return 0
        count = 0
        for user in load_roster_csv(roster_path):
            self.database.upsert_user(_user_record(user))
            count += 1
        logger.info("Loaded %s users from roster %s", count, roster_path)
        return count

    def touch_user(self, principal: Principal) -> None:
        """Record profile claims carried by the caller's credential."""
        if principal.display_name is None and principal.cohort is None and principal.avatar_ref is None:
            return
        existing = self.database.get_user(principal.user_id)
        if existing is not None and all(
            claim is None or claim == existing[column]
            for claim, column in (
                (principal.display_name, "display_name"),
                (principal.avatar_ref, "avatar_ref"),
                (principal.cohort, "cohort"),
            )
        ):
            return
        display_name = principal.display_name or (existing["display_name"] if existing else principal.user_id)
        self.database.upsert_user(
            _user_record(
                User(
                    id=principal.user_id,
                    display_name=display_name,
                    avatar_ref=principal.avatar_ref,
                    cohort=principal.cohort,
                )
            )
        )

    # endregion

    # region Snapshots
    def checkins_snapshot(self, viewer_id: str) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.presence.list_active(viewer_id)]

    def events_snapshot(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.events.list_all()]

    def initial_snapshot(self, viewer_id: str) -> Dict[str, Any]:
        return {"checkIns": self.checkins_snapshot(viewer_id), "events": self.events_snapshot()}

    async def push_checkins(self) -> None:
        try:
            active = self.presence.all_active()
        except PersistenceError as exc:
            logger.error("Check-in broadcast skipped: %s", exc)
            return

        def build(viewer_id: str) -> List[Dict[str, Any]]:
            return [c.to_dict() for c in self.presence.visible_to(active, viewer_id)]

        await self.broadcaster.publish("checkIns", build)

    async def push_events(self) -> None:
        try:
            data = self.events_snapshot()
        except PersistenceError as exc:
            logger.error("Event broadcast skipped: %s", exc)
            return
        await self.broadcaster.publish("events", lambda _viewer: data)

    # endregion

    # region Presence
    async def report_checkin(
        self,
        user_id: str,
        place_name: str,
        coordinates: Coordinates,
        status_tag: str | None,
    ) -> CheckIn:
        checkin = self.presence.report(user_id, place_name, coordinates, status_tag)
        await self.push_checkins()
        return checkin

    async def update_status(self, checkin_id: str, user_id: str, status_tag: str | None) -> bool:
        updated = self.presence.update_status(checkin_id, user_id, status_tag)
        if updated:
            await self.push_checkins()
        return updated

    async def check_out(self, checkin_id: str, user_id: str) -> bool:
        removed = self.presence.remove(checkin_id, user_id)
        if removed:
            await self.push_checkins()
        return removed

    def list_checkins(self, viewer_id: str | None, cohort: str | None = None) -> List[CheckIn]:
        return self.presence.list_active(viewer_id, cohort)

    def own_checkin(self, user_id: str) -> Optional[CheckIn]:
        return self.presence.get_for_user(user_id)

    def purge_expired(self) -> int:
        purged = self.presence.purge_expired()
        if purged:
            logger.info("Purged %s expired check-ins", purged)
        return purged

    # endregion

    # region Events
    async def create_event(
        self,
        creator_id: str,
        title: str,
        description: str,
        category: str | None,
        date: datetime | None,
        poll: PollDraft | None,
    ) -> Event:
        event = self.events.create(creator_id, title, description, category, date, poll)
        await self.push_events()
        return event

    async def attend(self, event_id: str, user_id: str) -> Outcome:
        return await self._after_event_change(self.events.attend(event_id, user_id))

    async def unattend(self, event_id: str, user_id: str) -> Outcome:
        return await self._after_event_change(self.events.unattend(event_id, user_id))

    async def vote(self, event_id: str, option_id: str, user_id: str) -> Outcome:
        return await self._after_event_change(self.events.vote(event_id, option_id, user_id))

    async def update_event(self, event_id: str, user_id: str, **changes: Any) -> Outcome:
        return await self._after_event_change(self.events.update(event_id, user_id, **changes))

    async def remove_event(self, event_id: str, user_id: str) -> Outcome:
        return await self._after_event_change(self.events.remove(event_id, user_id))

    async def _after_event_change(self, outcome: Outcome) -> Outcome:
        if outcome:
            await self.push_events()
        return outcome

    # endregion

    # region Feedback
    def list_feedback(self) -> List[Feedback]:
        return self.feedback.list_all()

    def create_feedback(self, creator_id: str, title: str, description: str, category: str) -> Feedback:
        return self.feedback.create(creator_id, title, description, category)

    def toggle_upvote(self, feedback_id: str, user_id: str) -> Optional[bool]:
        return self.feedback.toggle_upvote(feedback_id, user_id)

    def add_comment(self, feedback_id: str, user_id: str, content: str) -> Optional[FeedbackComment]:
        return self.feedback.add_comment(feedback_id, user_id, content)

    def remove_feedback(self, feedback_id: str, user_id: str) -> Outcome:
        return self.feedback.remove(feedback_id, user_id)

    # endregion


def load_roster_csv(path: Path) -> Iterable[User]:
    with path.open(newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        for row in reader:
            if not row.get("user_id"):
                continue
            yield User(
                id=row["user_id"],
                display_name=row.get("display_name") or row["user_id"],
                avatar_ref=row.get("avatar_ref") or None,
                cohort=row.get("cohort") or None,
            )


def _user_record(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "display_name": user.display_name,
        "avatar_ref": user.avatar_ref,
        "cohort": user.cohort,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }


__all__ = ["CampusPulseService", "load_roster_csv"]
