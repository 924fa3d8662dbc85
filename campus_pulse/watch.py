"""Terminal watcher: `python -m campus_pulse.watch`.

Runs a sync client against a Campus Pulse server and logs every change to
the local collections. `WATCH_SCREEN` picks which domain polls fast.
"""

from __future__ import annotations

import asyncio
import logging
import os

from .config import ClientSettings, load_client_settings
from .http_client import ApiClient
from .sync import Domain, PollingPolicy, Screen, SyncClient, WebSocketPushChannel

logger = logging.getLogger(__name__)


def describe(client: SyncClient, domain: Domain) -> str:
    if domain is Domain.CHECKINS:
        places = ", ".join(f"{c.user_id}@{c.place_name}" for c in client.checkins)
        return f"{len(client.checkins)} check-ins: {places or '-'}"
    if domain is Domain.EVENTS:
        undetermined = sum(1 for e in client.events if e.is_undetermined)
        return f"{len(client.events)} events ({undetermined} polling)"
    return f"{len(client.feedback)} feedback entries"


async def watch(settings: ClientSettings, screen: Screen = Screen.PRESENCE) -> None:
    api = ApiClient(settings.api_base_url, settings.token)
    client = SyncClient(
        api,
        WebSocketPushChannel(settings.websocket_url, settings.token),
        PollingPolicy(settings.foreground_interval, settings.background_interval),
        screen=screen,
        stale_after=settings.stale_after,
    )
    client.subscribe(lambda domain: logger.info("%s", describe(client, domain)))
    await client.start()
    logger.info("Watching %s (screen=%s)", settings.api_base_url, screen.value)
    try:
        while True:
            await asyncio.sleep(settings.stale_after)
            for domain in Domain:
                if client.is_stale(domain):
                    logger.warning("%s data is stale", domain.value)
    finally:
        await client.stop()
        await api.close()


def run() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "info").upper(),
        handlers=[logging.StreamHandler()],
    )
    settings = load_client_settings(os.getenv("CAMPUS_PULSE_ENV"))
    screen = Screen(os.getenv("WATCH_SCREEN", Screen.PRESENCE.value))
    try:
        asyncio.run(watch(settings, screen))
    except KeyboardInterrupt:
        logger.info("Watcher stopped")


if __name__ == "__main__":  # pragma: no cover
    run()


__all__ = ["watch", "run", "describe"]
