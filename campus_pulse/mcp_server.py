"""MCP server exposing read-only Campus Pulse tools."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .service import CampusPulseService

mcp = FastMCP("campus-pulse")


@lru_cache(maxsize=1)
def _get_service() -> CampusPulseService:
    settings = load_settings(os.getenv("CAMPUS_PULSE_ENV"))
    return CampusPulseService.from_settings(settings)


@mcp.tool()
async def get_active_checkins(cohort: Optional[str] = None) -> dict:
    """Return active check-ins, newest first, optionally for one cohort.

    Ghost-mode check-ins are never included.
    """

    checkins = _get_service().list_checkins(None, cohort)
    return {"cohort": cohort, "checkins": [c.to_dict() for c in checkins]}


@mcp.tool()
async def get_events() -> dict:
    """Return every event with its attendees and poll tallies."""

    return {"events": _get_service().events_snapshot()}


@mcp.tool()
async def get_event(event_id: str) -> dict:
    """Return one event by id."""

    event = _get_service().events.get(event_id)
    if event is None:
        raise ValueError("Event not found")
    return event.to_dict()


@mcp.tool()
async def get_feedback() -> dict:
    """Return feedback entries, newest first, with upvotes and comments."""

    return {"feedback": [f.to_dict() for f in _get_service().list_feedback()]}


if __name__ == "__main__":  # pragma: no cover
    mcp.run()


__all__ = [
    "mcp",
    "get_active_checkins",
    "get_events",
    "get_event",
    "get_feedback",
]
