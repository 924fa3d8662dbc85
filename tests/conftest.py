"""Shared fixtures: a temporary SQLite database, a controllable clock and tokens."""

from datetime import datetime, timedelta, timezone

import pytest

from campus_pulse.auth import issue_token
from campus_pulse.config import Settings
from campus_pulse.db import Database
from campus_pulse.events import EventStore
from campus_pulse.feedback import FeedbackStore
from campus_pulse.presence import PresenceStore


class FakeClock:
    """Callable clock for stores; advance it instead of sleeping."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret="test-secret",
        database_path=tmp_path / "campus.db",
        roster_path=tmp_path / "roster.csv",
    )


@pytest.fixture
def database(settings):
    return Database(settings.database_path)


@pytest.fixture
def presence(database, clock):
    return PresenceStore(database, clock=clock)


@pytest.fixture
def events(database, clock):
    return EventStore(database, clock=clock)


@pytest.fixture
def feedback(database, clock):
    return FeedbackStore(database, clock=clock)


@pytest.fixture
def token_for(settings):
    def make(user_id: str, **claims) -> str:
        return issue_token(user_id, settings, **claims)

    return make


@pytest.fixture
def auth_headers(token_for):
    def make(user_id: str, **claims) -> dict:
        return {"Authorization": f"Bearer {token_for(user_id, **claims)}"}

    return make
