"""Configuration helpers for Campus Pulse."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_GEOCODER_URL = "https://nominatim.openstreetmap.org"


@dataclass(slots=True)
class Settings:
    """Server configuration values loaded from environment variables."""

    jwt_secret: str
    database_path: Path
    roster_path: Path
    jwt_algorithm: str = "HS256"
    checkin_ttl_hours: int = 24
    ghost_status: str = "👻"
    purge_interval_seconds: int = 900


@dataclass(slots=True)
class ClientSettings:
    """Configuration for the sync client and the watcher CLI."""

    api_base_url: str
    token: str
    foreground_interval: float = 5.0
    background_interval: float = 30.0
    stale_after: float = 120.0
    geocoder_url: str = DEFAULT_GEOCODER_URL
    geolocation_timeout: float = 10.0

    @property
    def websocket_url(self) -> str:
        base = self.api_base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws"


def _load_env(env_file: str | None) -> None:
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()


def load_settings(env_file: str | None = None) -> Settings:
    """Load server settings from the environment, optionally from a specific file."""

    _load_env(env_file)

    jwt_secret = os.getenv("JWT_SECRET")
    if not jwt_secret:
        raise RuntimeError("JWT_SECRET must be configured")

    return Settings(
        jwt_secret=jwt_secret,
        database_path=Path(os.getenv("DATABASE_PATH", "campus_pulse.db")).expanduser(),
        roster_path=Path(os.getenv("ROSTER_PATH", "roster.csv")).expanduser(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        checkin_ttl_hours=int(os.getenv("CHECKIN_TTL_HOURS", "24")),
        ghost_status=os.getenv("GHOST_STATUS", "👻"),
        purge_interval_seconds=int(os.getenv("PURGE_INTERVAL_SECONDS", "900")),
    )


def load_client_settings(env_file: str | None = None) -> ClientSettings:
    """Load sync client settings from the environment."""

    _load_env(env_file)

    token = os.getenv("CAMPUS_PULSE_TOKEN")
    if not token:
        raise RuntimeError("CAMPUS_PULSE_TOKEN must be configured")

    return ClientSettings(
        api_base_url=os.getenv("CAMPUS_PULSE_URL", "http://localhost:8000"),
        token=token,
        foreground_interval=float(os.getenv("FOREGROUND_POLL_SECONDS", "5")),
        background_interval=float(os.getenv("BACKGROUND_POLL_SECONDS", "30")),
        stale_after=float(os.getenv("STALE_AFTER_SECONDS", "120")),
        geocoder_url=os.getenv("GEOCODER_URL", DEFAULT_GEOCODER_URL),
        geolocation_timeout=float(os.getenv("GEOLOCATION_TIMEOUT_SECONDS", "10")),
    )


__all__ = ["Settings", "ClientSettings", "load_settings", "load_client_settings"]
