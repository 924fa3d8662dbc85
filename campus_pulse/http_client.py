"""HTTP client for the Campus Pulse REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from .models import CheckIn, Coordinates, Event, Feedback, FeedbackComment, to_millis


class ApiError(RuntimeError):
    """Raised when the API answers with `success: false`."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class ApiConflict(ApiError):
    """A refused mutation (already attending, poll locked, not the creator...)."""


class ApiClient:
    """Async wrapper around the endpoints the sync client and adapter use."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response = await self._client.request(method, path, json=json, params=params)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_success and body.get("success"):
            return body.get("data")
        message = body.get("message") or response.reason_phrase
        if response.status_code in (403, 409):
            raise ApiConflict(response.status_code, message)
        raise ApiError(response.status_code, message)

    async def _mutate(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> bool:
        """Run a mutation; a vanished target is a soft `False`, conflicts raise."""
        try:
            await self._request(method, path, json=json)
        except ApiError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    # region Check-ins
    async def list_checkins(self, cohort: Optional[str] = None) -> List[CheckIn]:
        params = {"cohort": cohort} if cohort else None
        data = await self._request("GET", "/checkins", params=params)
        return [CheckIn.from_dict(item) for item in data or []]

    async def own_checkin(self) -> Optional[CheckIn]:
        data = await self._request("GET", "/checkins/me")
        return CheckIn.from_dict(data) if data else None

    async def report_checkin(
        self,
        place_name: str,
        coordinates: Coordinates,
        status_tag: Optional[str] = None,
    ) -> CheckIn:
        data = await self._request(
            "POST",
            "/checkins",
            json={
                "placeName": place_name,
                "coordinates": coordinates.to_dict(),
                "statusTag": status_tag,
            },
        )
        return CheckIn.from_dict(data)

    async def update_status(self, checkin_id: str, status_tag: Optional[str]) -> bool:
        return await self._mutate("PATCH", f"/checkins/{checkin_id}/status", {"statusTag": status_tag})

    async def check_out(self, checkin_id: str) -> bool:
        return await self._mutate("DELETE", f"/checkins/{checkin_id}")

    # endregion

    # region Events
    async def list_events(self) -> List[Event]:
        data = await self._request("GET", "/events")
        return [Event.from_dict(item) for item in data or []]

    async def create_event(
        self,
        title: str,
        description: str = "",
        category: Optional[str] = None,
        date: Optional[datetime] = None,
        poll: Optional[Dict[str, Any]] = None,
    ) -> Event:
        data = await self._request(
            "POST",
            "/events",
            json={
                "title": title,
                "description": description,
                "category": category,
                "date": to_millis(date) if date else None,
                "poll": poll,
            },
        )
        return Event.from_dict(data)

    async def attend(self, event_id: str) -> bool:
        return await self._mutate("POST", f"/events/{event_id}/attend")

    async def unattend(self, event_id: str) -> bool:
        return await self._mutate("DELETE", f"/events/{event_id}/attend")

    async def vote(self, event_id: str, option_id: str) -> bool:
        return await self._mutate("POST", f"/events/{event_id}/poll/{option_id}/vote")

    async def remove_event(self, event_id: str) -> bool:
        return await self._mutate("DELETE", f"/events/{event_id}")

    # endregion

    # region Feedback
    async def list_feedback(self) -> List[Feedback]:
        data = await self._request("GET", "/feedback")
        return [Feedback.from_dict(item) for item in data or []]

    async def create_feedback(self, title: str, description: str = "", category: str = "other") -> Feedback:
        data = await self._request(
            "POST",
            "/feedback",
            json={"title": title, "description": description, "category": category},
        )
        return Feedback.from_dict(data)

    async def toggle_upvote(self, feedback_id: str) -> Optional[bool]:
        try:
            data = await self._request("POST", f"/feedback/{feedback_id}/upvote")
        except ApiError as exc:
            if exc.status_code == 404:
                return None
            raise
        return bool(data["upvoted"])

    async def add_comment(self, feedback_id: str, content: str) -> Optional[FeedbackComment]:
        try:
            data = await self._request("POST", f"/feedback/{feedback_id}/comments", json={"content": content})
        except ApiError as exc:
            if exc.status_code == 404:
                return None
            raise
        return FeedbackComment.from_dict(data)

    # endregion


__all__ = ["ApiClient", "ApiError", "ApiConflict"]
