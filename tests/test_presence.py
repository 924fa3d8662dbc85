"""Presence store: single active check-in, TTL expiry and ghost mode."""

import sqlite3
from datetime import timedelta

import pytest

from campus_pulse.errors import ValidationError
from campus_pulse.models import UNLOCATED, Located, Unlocated
from campus_pulse.presence import PresenceStore


def test_report_replaces_previous_checkin(presence, clock):
    first = presence.report("alice", "Library", Located(45.76, 4.85), "study")
    clock.advance(minutes=10)
    second = presence.report("alice", "Cafeteria", UNLOCATED, "lunch")

    active = presence.list_active("bob")
    assert [c.id for c in active] == [second.id]
    assert first.id != second.id
    assert active[0].place_name == "Cafeteria"


def test_location_lost_keeps_single_record(presence):
    presence.report("alice", "Library", Located(lat=45.76, lon=4.85), "study")
    presence.report("alice", "Library", UNLOCATED, "study")

    active = presence.list_active("alice")
    assert len(active) == 1
    assert active[0].place_name == "Library"
    assert active[0].status_tag == "study"
    assert isinstance(active[0].coordinates, Unlocated)
    assert active[0].to_dict()["coordinates"] is None


def test_at_most_one_row_per_user_in_storage(presence, database):
    for place in ("Library", "Gym", "Lab"):
        presence.report("alice", place)
    with database.connect() as conn:
        count = conn.execute("SELECT COUNT(*) FROM checkins WHERE user_id = 'alice'").fetchone()[0]
    assert count == 1


def test_storage_rejects_second_row_for_same_user(presence, database):
    presence.report("alice", "Library")
    with database.connect() as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO checkins (id, user_id, place_name, created_at) VALUES ('x', 'alice', 'Gym', 0)"
            )


def test_update_status_keeps_created_at_and_coordinates(presence, clock):
    checkin = presence.report("alice", "Library", Located(45.76, 4.85), "study")
    clock.advance(hours=1)

    assert presence.update_status(checkin.id, "alice", "break") is True

    (updated,) = presence.list_active("alice")
    assert updated.status_tag == "break"
    assert updated.created_at == checkin.created_at
    assert updated.coordinates == Located(45.76, 4.85)


def test_update_status_requires_owner(presence):
    checkin = presence.report("alice", "Library")
    assert presence.update_status(checkin.id, "mallory", "hacked") is False
    assert presence.list_active("alice")[0].status_tag is None


def test_update_status_on_replaced_record_is_soft_false(presence):
    old = presence.report("alice", "Library")
    presence.report("alice", "Gym")
    assert presence.update_status(old.id, "alice", "busy") is False


def test_checkin_expires_after_ttl(presence, clock):
    checkin = presence.report("alice", "Library")
    clock.advance(hours=23, minutes=59)
    assert presence.list_active("bob") != []

    clock.advance(hours=1, minutes=1)
    assert presence.list_active("bob") == []
    assert presence.list_active("alice") == []
    assert presence.get_for_user("alice") is None
    assert presence.update_status(checkin.id, "alice", "late") is False


def test_ghost_checkin_visible_only_to_owner(presence):
    presence.report("alice", "Library", status_tag="👻")
    presence.report("bob", "Gym", status_tag="sport")

    assert [c.user_id for c in presence.list_active("alice")] == ["bob", "alice"]
    assert [c.user_id for c in presence.list_active("bob")] == ["bob"]
    assert [c.user_id for c in presence.list_active(None)] == ["bob"]


def test_list_active_is_newest_first(presence, clock):
    presence.report("alice", "Library")
    clock.advance(minutes=1)
    presence.report("bob", "Gym")
    clock.advance(minutes=1)
    presence.report("carol", "Lab")

    assert [c.user_id for c in presence.list_active("alice")] == ["carol", "bob", "alice"]


def test_cohort_filter_uses_roster(presence, database):
    database.upsert_user({"id": "alice", "display_name": "Alice", "avatar_ref": None, "cohort": "2026", "updated_at": None})
    database.upsert_user({"id": "bob", "display_name": "Bob", "avatar_ref": None, "cohort": "2027", "updated_at": None})
    presence.report("alice", "Library")
    presence.report("bob", "Gym")
    presence.report("carol", "Lab")

    scoped = presence.list_active("alice", cohort="2026")
    assert [c.user_id for c in scoped] == ["alice"]
    assert scoped[0].user.display_name == "Alice"
    assert len(presence.list_active("alice")) == 3


def test_purge_removes_only_expired(presence, clock):
    presence.report("alice", "Library")
    clock.advance(hours=20)
    presence.report("bob", "Gym")
    clock.advance(hours=5)

    assert presence.purge_expired() == 1
    assert [c.user_id for c in presence.all_active()] == ["bob"]


def test_remove_is_owner_only(presence):
    checkin = presence.report("alice", "Library")
    assert presence.remove(checkin.id, "bob") is False
    assert presence.remove(checkin.id, "alice") is True
    assert presence.get_for_user("alice") is None


@pytest.mark.parametrize(
    "place_name, status_tag",
    [("", None), ("   ", "study"), ("x" * 121, None), ("Library", "y" * 33)],
)
def test_invalid_input_rejected_before_write(presence, place_name, status_tag):
    with pytest.raises(ValidationError):
        presence.report("alice", place_name, UNLOCATED, status_tag)
    assert presence.all_active() == []


def test_located_validates_ranges():
    with pytest.raises(ValidationError):
        Located(lat=91, lon=0)
    with pytest.raises(ValidationError):
        Located(lat=0, lon=-181)


def test_custom_ttl(database, clock):
    short = PresenceStore(database, ttl=timedelta(hours=1), clock=clock)
    short.report("alice", "Library")
    clock.advance(minutes=61)
    assert short.list_active("alice") == []
