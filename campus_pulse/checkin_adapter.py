"""Presence-screen adapter: automatic check-in on open and status changes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from .geocoding import ReverseGeocoder
from .http_client import ApiError
from .models import UNLOCATED, CheckIn, Coordinates, Located

logger = logging.getLogger(__name__)

FALLBACK_PLACE_NAME = "On campus"

PositionProvider = Callable[[], Awaitable[Optional[Located]]]


class PositionUnavailable(Exception):
    """Raised by a position provider when permission is denied or no fix exists."""


class CheckInAdapter:
    """Reports at most one automatic check-in per screen mount.

    The guard is set before the first await, so re-renders and repeated
    position callbacks during the same mount cannot produce a second
    report. Status changes never create a check-in.
    """

    def __init__(
        self,
        api: Any,
        position: PositionProvider,
        geocoder: ReverseGeocoder | None = None,
        *,
        timeout: float = 10.0,
        fallback_place_name: str = FALLBACK_PLACE_NAME,
    ) -> None:
        self.api = api
        self.position = position
        self.geocoder = geocoder
        self.timeout = timeout
        self.fallback_place_name = fallback_place_name
        self.mounted = False
        self._attempted = False

    def mount(self) -> None:
        self.mounted = True
        self._attempted = False

    def unmount(self) -> None:
        self.mounted = False

    async def auto_report(self, current: CheckIn | None = None) -> CheckIn | None:
        """Report a check-in unless the user already has an active one.

        `current` is the caller's view of the user's check-in; when it is
        empty the server is asked, since a fresh client may not have
        synced yet.
        """
        if not self.mounted or self._attempted:
            return None
        self._attempted = True

        if current is None:
            try:
                current = await self.api.own_checkin()
            except (httpx.HTTPError, ApiError) as exc:
                logger.warning("Could not look up current check-in: %s", exc)
                self._attempted = False
                return None
        if current is not None:
            return None

        coordinates = await self._locate()
        place_name = await self._place_name(coordinates)
        try:
            checkin = await self.api.report_checkin(place_name, coordinates)
        except (httpx.HTTPError, ApiError) as exc:
            logger.warning("Automatic check-in failed: %s", exc)
            return None
        logger.info("Checked in automatically at %s", checkin.place_name)
        return checkin

    async def change_status(self, checkin_id: str, status_tag: str | None) -> bool:
        return await self.api.update_status(checkin_id, status_tag)

    async def _locate(self) -> Coordinates:
        try:
            located = await asyncio.wait_for(self.position(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.info("No position within %.0fs; checking in without coordinates", self.timeout)
            return UNLOCATED
        except PositionUnavailable as exc:
            logger.info("Position unavailable: %s", exc)
            return UNLOCATED
        return located if located is not None else UNLOCATED

    async def _place_name(self, coordinates: Coordinates) -> str:
        if isinstance(coordinates, Located) and self.geocoder is not None:
            name = await self.geocoder.place_name(coordinates)
            if name:
                return name
        return self.fallback_place_name


__all__ = ["CheckInAdapter", "PositionUnavailable", "PositionProvider", "FALLBACK_PLACE_NAME"]
