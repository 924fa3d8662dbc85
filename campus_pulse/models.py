"""Dataclasses representing Campus Pulse domain models."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def from_millis(value: float) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _millis_or_none(value: Optional[datetime]) -> Optional[int]:
    return to_millis(value) if value is not None else None


def _datetime_or_none(value: Optional[float]) -> Optional[datetime]:
    return from_millis(value) if value is not None else None


# region Coordinates
@dataclass(frozen=True, slots=True)
class Located:
    """A device position reported with a check-in."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        for name, value, bound in (("lat", self.lat, 90.0), ("lon", self.lon, 180.0)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number")
            if math.isnan(value) or not -bound <= value <= bound:
                raise ValidationError(f"{name} must be between -{bound:g} and {bound:g}")

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True, slots=True)
class Unlocated:
    """No position: permission denied, unavailable or timed out."""

    def to_dict(self) -> None:
        return None


UNLOCATED = Unlocated()

Coordinates = Located | Unlocated


def coordinates_from(value: Optional[Dict[str, Any]]) -> Coordinates:
    """Build coordinates from a `{lat, lon}` mapping; `None` means unlocated."""

    if value is None:
        return UNLOCATED
    try:
        return Located(lat=value["lat"], lon=value["lon"])
    except (KeyError, TypeError) as exc:
        raise ValidationError("coordinates must provide lat and lon") from exc


# endregion


@dataclass(frozen=True, slots=True)
class User:
    id: str
    display_name: str
    avatar_ref: str | None = None
    cohort: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "avatarRef": self.avatar_ref,
            "cohort": self.cohort,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            display_name=data.get("displayName") or data["id"],
            avatar_ref=data.get("avatarRef"),
            cohort=data.get("cohort"),
        )


@dataclass(frozen=True, slots=True)
class CheckIn:
    id: str
    user_id: str
    place_name: str
    coordinates: Coordinates
    status_tag: str | None
    created_at: datetime
    user: User | None = None

    @property
    def cohort(self) -> str | None:
        return self.user.cohort if self.user else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "user": self.user.to_dict() if self.user else None,
            "placeName": self.place_name,
            "coordinates": self.coordinates.to_dict(),
            "statusTag": self.status_tag,
            "createdAt": to_millis(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckIn":
        user = data.get("user")
        return cls(
            id=data["id"],
            user_id=data["userId"],
            place_name=data["placeName"],
            coordinates=coordinates_from(data.get("coordinates")),
            status_tag=data.get("statusTag"),
            created_at=from_millis(data["createdAt"]),
            user=User.from_dict(user) if user else None,
        )


# region Events
POLL_KINDS = ("date", "location")


@dataclass(slots=True)
class PollOption:
    id: str
    label: str
    voter_ids: List[str] = field(default_factory=list)
    date: datetime | None = None
    location: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "voterIds": list(self.voter_ids),
            "date": _millis_or_none(self.date),
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PollOption":
        return cls(
            id=data["id"],
            label=data["label"],
            voter_ids=list(data.get("voterIds", [])),
            date=_datetime_or_none(data.get("date")),
            location=data.get("location"),
        )


@dataclass(slots=True)
class Poll:
    poll_kind: str
    options: List[PollOption]
    closes_at: datetime | None = None

    def option(self, option_id: str) -> PollOption | None:
        return next((o for o in self.options if o.id == option_id), None)

    def choice_of(self, user_id: str) -> PollOption | None:
        """Return the option `user_id` currently votes for, if any."""
        return next((o for o in self.options if user_id in o.voter_ids), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pollKind": self.poll_kind,
            "closesAt": _millis_or_none(self.closes_at),
            "options": [option.to_dict() for option in self.options],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Poll":
        return cls(
            poll_kind=data["pollKind"],
            options=[PollOption.from_dict(o) for o in data.get("options", [])],
            closes_at=_datetime_or_none(data.get("closesAt")),
        )


@dataclass(slots=True)
class Event:
    id: str
    title: str
    description: str
    category: str | None
    creator_id: str
    date: datetime | None
    attendee_ids: List[str]
    poll: Poll | None
    created_at: datetime

    @property
    def is_undetermined(self) -> bool:
        return self.date is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "creatorId": self.creator_id,
            "date": _millis_or_none(self.date),
            "attendeeIds": list(self.attendee_ids),
            "poll": self.poll.to_dict() if self.poll else None,
            "createdAt": to_millis(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        poll = data.get("poll")
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            category=data.get("category"),
            creator_id=data["creatorId"],
            date=_datetime_or_none(data.get("date")),
            attendee_ids=list(data.get("attendeeIds", [])),
            poll=Poll.from_dict(poll) if poll else None,
            created_at=from_millis(data["createdAt"]),
        )


# endregion


# region Feedback
FEEDBACK_CATEGORIES = ("bug", "feature", "improvement", "other")
FEEDBACK_STATUSES = ("pending", "in-progress", "completed", "rejected")


@dataclass(frozen=True, slots=True)
class FeedbackComment:
    id: str
    feedback_id: str
    user_id: str
    content: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feedbackId": self.feedback_id,
            "userId": self.user_id,
            "content": self.content,
            "createdAt": to_millis(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackComment":
        return cls(
            id=data["id"],
            feedback_id=data["feedbackId"],
            user_id=data["userId"],
            content=data["content"],
            created_at=from_millis(data["createdAt"]),
        )


@dataclass(slots=True)
class Feedback:
    id: str
    title: str
    description: str
    category: str
    status: str
    creator_id: str
    created_at: datetime
    upvoter_ids: List[str] = field(default_factory=list)
    comments: List[FeedbackComment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "status": self.status,
            "creatorId": self.creator_id,
            "createdAt": to_millis(self.created_at),
            "upvoterIds": list(self.upvoter_ids),
            "comments": [comment.to_dict() for comment in self.comments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feedback":
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            category=data["category"],
            status=data["status"],
            creator_id=data["creatorId"],
            created_at=from_millis(data["createdAt"]),
            upvoter_ids=list(data.get("upvoterIds", [])),
            comments=[FeedbackComment.from_dict(c) for c in data.get("comments", [])],
        )


# endregion


__all__ = [
    "Located",
    "Unlocated",
    "UNLOCATED",
    "Coordinates",
    "coordinates_from",
    "User",
    "CheckIn",
    "POLL_KINDS",
    "PollOption",
    "Poll",
    "Event",
    "FEEDBACK_CATEGORIES",
    "FEEDBACK_STATUSES",
    "FeedbackComment",
    "Feedback",
    "utcnow",
    "to_millis",
    "from_millis",
    "from_epoch",
]
