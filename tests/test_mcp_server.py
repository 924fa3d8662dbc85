"""MCP read tools, called directly as coroutines."""

from datetime import datetime, timezone

import pytest

from campus_pulse import mcp_server
from campus_pulse.models import UNLOCATED


@pytest.fixture
def service(tmp_path, monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "mcp.db"))
    monkeypatch.delenv("CAMPUS_PULSE_ENV", raising=False)
    mcp_server._get_service.cache_clear()
    yield mcp_server._get_service()
    mcp_server._get_service.cache_clear()


@pytest.mark.asyncio
async def test_active_checkins_hide_ghosts(service):
    service.presence.report("alice", "Library", UNLOCATED, "👻")
    service.presence.report("bob", "Gym", UNLOCATED, "sport")

    result = await mcp_server.get_active_checkins()

    assert result["cohort"] is None
    assert [c["userId"] for c in result["checkins"]] == ["bob"]


@pytest.mark.asyncio
async def test_events_and_single_event(service):
    event = service.events.create("carol", "Picnic", date=datetime(2025, 3, 14, 19, tzinfo=timezone.utc))

    listed = await mcp_server.get_events()
    assert [e["id"] for e in listed["events"]] == [event.id]
    assert (await mcp_server.get_event(event.id))["title"] == "Picnic"
    with pytest.raises(ValueError):
        await mcp_server.get_event("missing")


@pytest.mark.asyncio
async def test_feedback(service):
    service.feedback.create("bob", "Dark mode", category="feature")
    result = await mcp_server.get_feedback()
    assert [f["title"] for f in result["feedback"]] == ["Dark mode"]
