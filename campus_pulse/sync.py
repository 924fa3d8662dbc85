"""Client-side synchronization of check-ins, events and feedback.

Two independent channels feed the local collections:

* the push channel, whose snapshots replace a collection wholesale, and
* one polling loop per domain, fast for the domain on screen and slow for
  the others, suspended while the app is hidden.

Polling is the safety net for a push channel that drops silently when a
phone sleeps or changes network. Both channels only ever replace whole
collections, so there is nothing to merge and no ghost entries.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol
from urllib.parse import urlencode

import httpx
import websockets

from .errors import ValidationError
from .http_client import ApiError
from .models import CheckIn, Event

logger = logging.getLogger(__name__)


class Domain(str, Enum):
    CHECKINS = "checkIns"
    EVENTS = "events"
    FEEDBACK = "feedback"


class Screen(str, Enum):
    PRESENCE = "presence"
    EVENTS = "events"
    FEEDBACK = "feedback"


SCREEN_DOMAINS = {
    Screen.PRESENCE: Domain.CHECKINS,
    Screen.EVENTS: Domain.EVENTS,
    Screen.FEEDBACK: Domain.FEEDBACK,
}


@dataclass(slots=True)
class PollingPolicy:
    foreground_interval: float = 5.0
    background_interval: float = 30.0

    def interval_for(self, domain: Domain, screen: Screen) -> float:
        if SCREEN_DOMAINS[screen] is domain:
            return self.foreground_interval
        return self.background_interval


class PushSource(Protocol):
    def messages(self) -> AsyncIterator[Dict[str, Any]]:
        ...


class WebSocketPushChannel:
    """Yields push messages forever, reconnecting with backoff when dropped.

    Every reconnect starts with the server's initial snapshot, which heals
    anything missed while disconnected.
    """

    def __init__(
        self,
        url: str,
        token: str,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ) -> None:
        self._url = f"{url}?{urlencode({'token': token})}"
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

    async def messages(self) -> AsyncIterator[Dict[str, Any]]:
        delay = self.reconnect_delay
        while True:
            try:
                async with websockets.connect(self._url) as socket:
                    delay = self.reconnect_delay
                    async for raw in socket:
                        try:
                            yield json.loads(raw)
                        except ValueError:
                            logger.warning("Ignoring malformed push message")
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
                logger.warning("Push channel down (%s); retrying in %.1fs", exc, delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)


Listener = Callable[[Domain], None]


class SyncClient:
    """Keeps local copies of each domain converging to the server's state."""

    def __init__(
        self,
        api: Any,
        push: Optional[PushSource] = None,
        policy: Optional[PollingPolicy] = None,
        *,
        screen: Screen = Screen.PRESENCE,
        stale_after: float = 120.0,
    ) -> None:
        self.api = api
        self.push = push
        self.policy = policy or PollingPolicy()
        self.stale_after = stale_after
        self.checkins: List[CheckIn] = []
        self.events: List[Event] = []
        self.feedback: List[Any] = []
        self._screen = screen
        self._visible = asyncio.Event()
        self._visible.set()
        self._reschedule = {domain: asyncio.Event() for domain in Domain}
        self._generation = {domain: 0 for domain in Domain}
        self._last_success: Dict[Domain, float] = {}
        self._listeners: List[Listener] = []
        self._tasks: List[asyncio.Task] = []
        self._fetchers: Dict[Domain, Callable[[], Awaitable[List[Any]]]] = {
            Domain.CHECKINS: api.list_checkins,
            Domain.EVENTS: api.list_events,
            Domain.FEEDBACK: api.list_feedback,
        }

    # region Lifecycle
    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Fetch every domain once, then start the push and polling loops."""
        if self._tasks:
            raise RuntimeError("sync client already started")
        await self.refresh_all()
        for domain in Domain:
            self._tasks.append(asyncio.create_task(self._poll_loop(domain), name=f"poll-{domain.value}"))
        if self.push is not None:
            self._tasks.append(asyncio.create_task(self._push_loop(), name="push"))

    async def stop(self, *, clear: bool = False) -> None:
        """Cancel every loop; with `clear`, also drop local state (logout)."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if clear:
            self.checkins, self.events, self.feedback = [], [], []
            self._last_success.clear()

    # endregion

    # region Screen and visibility
    @property
    def screen(self) -> Screen:
        return self._screen

    def set_screen(self, screen: Screen) -> None:
        """Re-evaluate each domain's interval, measured from its last fetch."""
        if screen is self._screen:
            return
        self._screen = screen
        for event in self._reschedule.values():
            event.set()

    @property
    def visible(self) -> bool:
        return self._visible.is_set()

    def set_visible(self, visible: bool) -> None:
        if visible:
            self._visible.set()
        else:
            self._visible.clear()

    def interval_for(self, domain: Domain) -> float:
        return self.policy.interval_for(domain, self._screen)

    # endregion

    # region State
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def collection(self, domain: Domain) -> List[Any]:
        if domain is Domain.CHECKINS:
            return self.checkins
        if domain is Domain.EVENTS:
            return self.events
        return self.feedback

    def is_stale(self, domain: Domain) -> bool:
        """True when no channel has delivered this domain for `stale_after` seconds."""
        last = self._last_success.get(domain)
        if last is None:
            return True
        return asyncio.get_running_loop().time() - last > self.stale_after

    def _replace(self, domain: Domain, items: List[Any]) -> None:
        self._generation[domain] += 1
        self._last_success[domain] = asyncio.get_running_loop().time()
        seen = set()
        unique = []
        for item in items:
            if item.id in seen:
                continue
            seen.add(item.id)
            unique.append(item)
        if unique == self.collection(domain):
            return
        if domain is Domain.CHECKINS:
            self.checkins = unique
        elif domain is Domain.EVENTS:
            self.events = unique
        else:
            self.feedback = unique
        for listener in list(self._listeners):
            try:
                listener(domain)
            except Exception:  # noqa: BLE001
                logger.exception("Sync listener failed for %s", domain.value)

    # endregion

    # region Channels
    async def refresh(self, domain: Domain) -> bool:
        """Fetch one domain; a response overtaken by a push is discarded."""
        generation = self._generation[domain]
        try:
            items = await self._fetchers[domain]()
        except (httpx.HTTPError, ApiError) as exc:
            logger.warning("Polling %s failed: %s", domain.value, exc)
            return False
        if self._generation[domain] != generation:
            logger.debug("Discarding %s poll result superseded by a newer snapshot", domain.value)
            return True
        self._replace(domain, items)
        return True

    async def refresh_all(self) -> None:
        await asyncio.gather(*(self.refresh(domain) for domain in Domain))

    def apply_push(self, message: Dict[str, Any]) -> None:
        if not isinstance(message, dict):
            logger.warning("Ignoring push message that is not an object: %s", type(message).__name__)
            return
        kind = message.get("type")
        try:
            if kind == "initial":
                checkins = [CheckIn.from_dict(item) for item in message.get("checkIns", [])]
                events = [Event.from_dict(item) for item in message.get("events", [])]
                self._replace(Domain.CHECKINS, checkins)
                self._replace(Domain.EVENTS, events)
            elif kind == Domain.CHECKINS.value:
                self._replace(Domain.CHECKINS, [CheckIn.from_dict(item) for item in message.get("data", [])])
            elif kind == Domain.EVENTS.value:
                self._replace(Domain.EVENTS, [Event.from_dict(item) for item in message.get("data", [])])
            else:
                logger.debug("Ignoring push message of type %r", kind)
        except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring malformed %r push message: %s", kind, exc)

    async def _push_loop(self) -> None:
        async for message in self.push.messages():
            self.apply_push(message)

    async def _poll_loop(self, domain: Domain) -> None:
        loop = asyncio.get_running_loop()
        wake = self._reschedule[domain]
        last_fetch = loop.time()
        while True:
            if not self._visible.is_set():
                await self._visible.wait()
            delay = last_fetch + self.interval_for(domain) - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(wake.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                else:
                    wake.clear()
                    continue
            if not self._visible.is_set():
                continue
            await self.refresh(domain)
            last_fetch = loop.time()

    # endregion


__all__ = [
    "Domain",
    "Screen",
    "SCREEN_DOMAINS",
    "PollingPolicy",
    "PushSource",
    "WebSocketPushChannel",
    "SyncClient",
]
