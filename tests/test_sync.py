"""Sync client: wholesale replacement, stale-poll guard, cadence and visibility."""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
import websockets

from campus_pulse.models import UNLOCATED, CheckIn, Event
from campus_pulse.sync import Domain, PollingPolicy, Screen, SyncClient, WebSocketPushChannel

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def make_checkin(checkin_id: str, user_id: str, place: str = "Library") -> CheckIn:
    return CheckIn(checkin_id, user_id, place, UNLOCATED, None, NOW)


def make_event(event_id: str, title: str = "Picnic") -> Event:
    return Event(event_id, title, "", None, "carol", NOW, ["carol"], None, NOW)


class FakeApi:
    def __init__(self) -> None:
        self.checkins = [make_checkin("c1", "alice")]
        self.events = [make_event("e1")]
        self.feedback = []
        self.calls = {"checkins": 0, "events": 0, "feedback": 0}
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def list_checkins(self):
        self.calls["checkins"] += 1
        snapshot = list(self.checkins)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return snapshot

    async def list_events(self):
        self.calls["events"] += 1
        return list(self.events)

    async def list_feedback(self):
        self.calls["feedback"] += 1
        return list(self.feedback)


class FakePush:
    def __init__(self, messages) -> None:
        self._messages = messages

    async def messages(self):
        for message in self._messages:
            yield message
        await asyncio.Event().wait()


@pytest.fixture
def api():
    return FakeApi()


@pytest.mark.asyncio
async def test_start_fetches_every_domain_once(api):
    client = SyncClient(api, policy=PollingPolicy(10, 10))
    await client.start()
    try:
        assert api.calls == {"checkins": 1, "events": 1, "feedback": 1}
        assert client.checkins == api.checkins
        assert client.events == api.events
        assert client.running
    finally:
        await client.stop()
    assert not client.running


@pytest.mark.asyncio
async def test_push_replaces_collections_wholesale(api):
    client = SyncClient(api)
    await client.refresh_all()

    fresh = make_checkin("c2", "bob", "Gym")
    client.apply_push({"type": "initial", "checkIns": [fresh.to_dict()], "events": []})
    assert client.checkins == [fresh]
    assert client.events == []

    client.apply_push({"type": "events", "data": [make_event("e9", "Quiz").to_dict()]})
    assert [e.id for e in client.events] == ["e9"]
    assert client.checkins == [fresh]


@pytest.mark.asyncio
async def test_listeners_notified_only_on_change(api):
    client = SyncClient(api)
    seen = []
    unsubscribe = client.subscribe(seen.append)

    await client.refresh(Domain.CHECKINS)
    await client.refresh(Domain.CHECKINS)
    assert seen == [Domain.CHECKINS]

    unsubscribe()
    client.apply_push({"type": "checkIns", "data": []})
    assert seen == [Domain.CHECKINS]
    assert client.checkins == []


@pytest.mark.asyncio
async def test_poll_response_older_than_push_is_discarded(api):
    client = SyncClient(api)
    api.gate = asyncio.Event()
    pending = asyncio.create_task(client.refresh(Domain.CHECKINS))
    await asyncio.sleep(0)

    fresh = make_checkin("c2", "alice", "Gym")
    client.apply_push({"type": "checkIns", "data": [fresh.to_dict()]})
    api.gate.set()
    await pending

    assert client.checkins == [fresh]


@pytest.mark.asyncio
async def test_transport_failure_keeps_last_state(api):
    client = SyncClient(api)
    await client.refresh(Domain.CHECKINS)

    api.error = httpx.ConnectError("offline")
    assert await client.refresh(Domain.CHECKINS) is False
    assert client.checkins == api.checkins


@pytest.mark.asyncio
async def test_duplicate_ids_collapse(api):
    client = SyncClient(api)
    duplicate = make_checkin("c1", "alice")
    client.apply_push({"type": "checkIns", "data": [duplicate.to_dict(), duplicate.to_dict()]})
    assert client.checkins == [duplicate]


@pytest.mark.asyncio
async def test_malformed_push_is_ignored(api):
    client = SyncClient(api)
    await client.refresh(Domain.CHECKINS)
    client.apply_push({"type": "checkIns", "data": [{"id": "broken"}]})
    client.apply_push({"type": "unknown", "data": []})
    assert client.checkins == api.checkins


@pytest.mark.asyncio
async def test_screen_on_view_polls_fast(api):
    client = SyncClient(api, policy=PollingPolicy(0.02, 10), screen=Screen.PRESENCE)
    await client.start()
    try:
        await asyncio.sleep(0.15)
        assert api.calls["checkins"] >= 3
        assert api.calls["events"] == 1

        client.set_screen(Screen.EVENTS)
        checkins_at_switch = api.calls["checkins"]

        await asyncio.sleep(0.15)
        assert api.calls["events"] >= 3
        assert api.calls["checkins"] <= checkins_at_switch + 1
    finally:
        await client.stop()


@pytest.mark.asyncio
async def test_rapid_screen_switching_keeps_polling(api):
    client = SyncClient(api, policy=PollingPolicy(0.03, 0.03))
    await client.start()
    try:
        before = dict(api.calls)
        for n in range(30):
            client.set_screen(Screen.EVENTS if n % 2 == 0 else Screen.PRESENCE)
            await asyncio.sleep(0.01)
        polled = {name: api.calls[name] - before[name] for name in before}
    finally:
        await client.stop()

    assert all(count >= 5 for count in polled.values()), polled


@pytest.mark.asyncio
async def test_switch_to_overdue_screen_fetches_at_once(api):
    client = SyncClient(api, policy=PollingPolicy(0.05, 10), screen=Screen.PRESENCE)
    await client.start()
    try:
        await asyncio.sleep(0.1)
        client.set_screen(Screen.EVENTS)
        await asyncio.sleep(0.01)
        assert api.calls["events"] == 2
    finally:
        await client.stop()


@pytest.mark.asyncio
async def test_hidden_app_suspends_polling(api):
    client = SyncClient(api, policy=PollingPolicy(0.02, 0.02))
    await client.start()
    try:
        client.set_visible(False)
        frozen = dict(api.calls)
        await asyncio.sleep(0.1)
        assert api.calls == frozen

        client.set_visible(True)
        await asyncio.sleep(0.1)
        assert api.calls["checkins"] > frozen["checkins"]
    finally:
        await client.stop()


@pytest.mark.asyncio
async def test_push_channel_feeds_client(api):
    pushed = make_checkin("c7", "dave", "Lab")
    push = FakePush([{"type": "checkIns", "data": [pushed.to_dict()]}])
    client = SyncClient(api, push, PollingPolicy(10, 10))
    await client.start()
    try:
        await asyncio.sleep(0.01)
        assert client.checkins == [pushed]
    finally:
        await client.stop()


@pytest.mark.asyncio
async def test_staleness(api):
    client = SyncClient(api, stale_after=0.02)
    assert client.is_stale(Domain.CHECKINS)

    await client.refresh(Domain.CHECKINS)
    assert not client.is_stale(Domain.CHECKINS)

    await asyncio.sleep(0.05)
    assert client.is_stale(Domain.CHECKINS)


@pytest.mark.asyncio
async def test_stop_with_clear_drops_state(api):
    client = SyncClient(api, policy=PollingPolicy(10, 10))
    await client.start()
    await client.stop(clear=True)
    assert client.checkins == []
    assert client.events == []
    assert client.is_stale(Domain.EVENTS)


@pytest.mark.asyncio
async def test_non_object_push_does_not_end_push_loop(api):
    pushed = make_checkin("c7", "dave", "Lab")
    push = FakePush([[], 5, "checkIns", {"type": "checkIns", "data": [pushed.to_dict()]}])
    client = SyncClient(api, push, PollingPolicy(10, 10))
    await client.start()
    try:
        await asyncio.sleep(0.01)
        assert client.checkins == [pushed]
    finally:
        await client.stop()


@pytest.mark.asyncio
async def test_push_channel_reconnects_and_applies_next_initial(api):
    accepted = 0

    async def handler(socket):
        nonlocal accepted
        accepted += 1
        place = "Library" if accepted == 1 else "Gym"
        snapshot = [make_checkin(f"c{accepted}", "alice", place).to_dict()]
        await socket.send(json.dumps({"type": "initial", "checkIns": snapshot, "events": []}))
        if accepted > 1:
            await socket.wait_closed()

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        push = WebSocketPushChannel(f"ws://127.0.0.1:{port}/ws", "token", reconnect_delay=0.01)
        client = SyncClient(api, push, PollingPolicy(10, 10))
        await client.start()
        try:
            for _ in range(200):
                if [c.id for c in client.checkins] == ["c2"]:
                    break
                await asyncio.sleep(0.01)
        finally:
            await client.stop()

    assert accepted >= 2
    assert [(c.id, c.place_name) for c in client.checkins] == [("c2", "Gym")]
