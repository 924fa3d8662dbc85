"""Results of store mutations that can be refused."""

from __future__ import annotations

from enum import Enum


class Outcome(str, Enum):
    """Why a mutation did or did not happen.

    Only ``OK`` is truthy, so callers can treat an outcome as the plain
    boolean the store contract promises and still tell conflicts apart.
    """

    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    ALREADY_ATTENDING = "already_attending"
    NOT_ATTENDING = "not_attending"
    CREATOR_CANNOT_LEAVE = "creator_cannot_leave"
    NO_POLL = "no_poll"
    UNKNOWN_OPTION = "unknown_option"
    POLL_LOCKED = "poll_locked"
    POLL_CLOSED = "poll_closed"

    def __bool__(self) -> bool:
        return self is Outcome.OK

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self]

    @property
    def status_code(self) -> int:
        if self is Outcome.OK:
            return 200
        if self is Outcome.NOT_FOUND:
            return 404
        if self in (Outcome.FORBIDDEN, Outcome.CREATOR_CANNOT_LEAVE):
            return 403
        return 409


OUTCOME_MESSAGES = {
    Outcome.OK: "ok",
    Outcome.NOT_FOUND: "not found",
    Outcome.FORBIDDEN: "only the creator may do this",
    Outcome.ALREADY_ATTENDING: "already attending this event",
    Outcome.NOT_ATTENDING: "not attending this event",
    Outcome.CREATOR_CANNOT_LEAVE: "the creator cannot leave their own event",
    Outcome.NO_POLL: "this event has no poll",
    Outcome.UNKNOWN_OPTION: "unknown poll option",
    Outcome.POLL_LOCKED: "the event date is fixed; voting is closed",
    Outcome.POLL_CLOSED: "the poll has closed",
}


__all__ = ["Outcome", "OUTCOME_MESSAGES"]
