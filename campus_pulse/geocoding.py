"""Best-effort reverse geocoding against a Nominatim-compatible service."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import DEFAULT_GEOCODER_URL
from .models import Located

logger = logging.getLogger(__name__)

USER_AGENT = "campus-pulse/1.0"


class ReverseGeocoder:
    """Turns coordinates into a short place name; never raises."""

    def __init__(
        self,
        base_url: str = DEFAULT_GEOCODER_URL,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def place_name(self, coordinates: Located) -> Optional[str]:
        params = {"format": "jsonv2", "lat": coordinates.lat, "lon": coordinates.lon, "zoom": 18}
        try:
            response = await self._client.get("/reverse", params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("Reverse geocoding failed for %s: %s", coordinates, exc)
            return None
        if not isinstance(data, dict) or data.get("error"):
            return None
        name = data.get("name")
        if name:
            return name
        display_name = data.get("display_name")
        if display_name:
            return display_name.split(",")[0].strip() or None
        return None


__all__ = ["ReverseGeocoder"]
