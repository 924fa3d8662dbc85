"""Service orchestration: roster sync, profile claims and post-mutation pushes."""

import pytest

from campus_pulse.auth import Principal
from campus_pulse.models import UNLOCATED
from campus_pulse.service import CampusPulseService


class RecordingChannel:
    def __init__(self) -> None:
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


@pytest.fixture
def service(settings):
    return CampusPulseService.from_settings(settings)


def test_sync_roster_without_file(service):
    assert service.sync_roster() == 0


def test_sync_roster_loads_users(service, settings):
    settings.roster_path.write_text(
        "user_id,display_name,avatar_ref,cohort\nalice,Alice A,avatars/a.png,2026\n,Nobody,,\nbob,,,2027\n",
        encoding="utf-8",
    )
    assert service.sync_roster() == 2
    bob = service.database.get_user("bob")
    assert bob["display_name"] == "bob"
    assert bob["cohort"] == "2027"


def test_touch_user_keeps_known_name(service):
    service.touch_user(Principal("alice", display_name="Alice", cohort="2026"))
    service.touch_user(Principal("alice", cohort="2027"))
    row = service.database.get_user("alice")
    assert row["display_name"] == "Alice"
    assert row["cohort"] == "2027"


def test_touch_user_without_claims_is_noop(service):
    service.touch_user(Principal("alice"))
    assert service.database.get_user("alice") is None


@pytest.mark.asyncio
async def test_report_pushes_viewer_specific_snapshots(service):
    alice, bob = RecordingChannel(), RecordingChannel()
    await service.broadcaster.connect("alice", alice, service.initial_snapshot)
    await service.broadcaster.connect("bob", bob, service.initial_snapshot)

    await service.report_checkin("alice", "Library", UNLOCATED, "👻")
    await service.broadcaster.flush()

    assert [c["userId"] for c in alice.sent[-1]["data"]] == ["alice"]
    assert bob.sent[-1] == {"type": "checkIns", "data": []}
    await service.broadcaster.close()


@pytest.mark.asyncio
async def test_refused_mutation_is_not_pushed(service):
    channel = RecordingChannel()
    await service.broadcaster.connect("bob", channel, service.initial_snapshot)

    assert await service.update_status("missing", "bob", "busy") is False
    assert await service.check_out("missing", "bob") is False
    assert not await service.attend("missing", "bob")
    await service.broadcaster.flush()
    assert [m["type"] for m in channel.sent] == ["initial"]
    await service.broadcaster.close()


def test_touch_user_skips_unchanged_claims(service, monkeypatch):
    writes = []
    upsert = service.database.upsert_user
    monkeypatch.setattr(service.database, "upsert_user", lambda user: (writes.append(user["id"]), upsert(user)))

    principal = Principal("alice", display_name="Alice", cohort="2026")
    service.touch_user(principal)
    service.touch_user(principal)
    service.touch_user(Principal("alice", cohort="2026"))
    assert writes == ["alice"]

    service.touch_user(Principal("alice", display_name="Alice", cohort="2027"))
    assert writes == ["alice", "alice"]
    assert service.database.get_user("alice")["cohort"] == "2027"
