"""FastAPI application exposing the Campus Pulse REST API and push channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import Principal, bearer_token, decode_token
from .config import Settings, load_settings
from .errors import AuthenticationError, PersistenceError, ValidationError
from .events import PollDraft, PollOptionDraft
from .models import coordinates_from, from_millis
from .outcomes import Outcome
from .service import CampusPulseService

logger = logging.getLogger(__name__)


# region Request bodies
class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CoordinatesBody(_Body):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class CheckInBody(_Body):
    place_name: str = Field(alias="placeName", min_length=1, max_length=120)
    coordinates: Optional[CoordinatesBody] = None
    status_tag: Optional[str] = Field(default=None, alias="statusTag", max_length=32)


class StatusBody(_Body):
    status_tag: Optional[str] = Field(default=None, alias="statusTag", max_length=32)


class PollOptionBody(_Body):
    label: str = Field(min_length=1, max_length=120)
    date: Optional[int] = None
    location: Optional[str] = Field(default=None, max_length=200)


class PollBody(_Body):
    poll_kind: Literal["date", "location"] = Field(alias="pollKind")
    options: List[PollOptionBody]
    closes_at: Optional[int] = Field(default=None, alias="closesAt")

    def to_draft(self) -> PollDraft:
        return PollDraft(
            poll_kind=self.poll_kind,
            options=[
                PollOptionDraft(
                    label=option.label,
                    date=from_millis(option.date) if option.date is not None else None,
                    location=option.location,
                )
                for option in self.options
            ],
            closes_at=from_millis(self.closes_at) if self.closes_at is not None else None,
        )


class EventBody(_Body):
    title: str = Field(min_length=1, max_length=120)
    description: str = ""
    category: Optional[str] = None
    date: Optional[int] = None
    poll: Optional[PollBody] = None


class EventUpdateBody(_Body):
    title: Optional[str] = Field(default=None, max_length=120)
    description: Optional[str] = None
    category: Optional[str] = None
    date: Optional[int] = None


class FeedbackBody(_Body):
    title: str = Field(min_length=1, max_length=120)
    description: str = ""
    category: Literal["bug", "feature", "improvement", "other"] = "other"


class CommentBody(_Body):
    content: str = Field(min_length=1, max_length=1000)


# endregion


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    *,
    success: bool = True,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    body: dict[str, Any] = {"success": success}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    return JSONResponse(body, status_code=status_code)


def outcome_response(outcome: Outcome, ok_message: str) -> JSONResponse:
    if outcome:
        return envelope(message=ok_message)
    return envelope(message=outcome.message, success=False, status_code=outcome.status_code)


def not_found(message: str) -> JSONResponse:
    return envelope(message=message, success=False, status_code=status.HTTP_404_NOT_FOUND)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[CampusPulseService] = None,
) -> FastAPI:
    settings = settings or load_settings()
    service = service or CampusPulseService.from_settings(settings)

    app = FastAPI(title="Campus Pulse API", version="1.0.0")

    # region Error envelopes
    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return envelope(message=str(exc.detail), success=False, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        reasons = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            reasons.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        return envelope(message=", ".join(reasons), success=False, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(ValidationError)
    async def validation_error(_: Request, exc: ValidationError) -> JSONResponse:
        return envelope(message=str(exc), success=False, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(PersistenceError)
    async def persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure on %s %s: %r", request.method, request.url.path, exc.__cause__)
        return envelope(
            message="persistence failure",
            success=False,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    # endregion

    async def periodic_purge() -> None:
        while True:
            await asyncio.sleep(settings.purge_interval_seconds)
            try:
                service.purge_expired()
            except PersistenceError as exc:
                logger.error("Expired check-in purge failed: %r", exc.__cause__)

    @app.on_event("startup")
    async def startup_event() -> None:
        service.sync_roster()
        app.state.purge_task = asyncio.create_task(periodic_purge())

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        task = getattr(app.state, "purge_task", None)
        if task is not None:
            task.cancel()
        await service.broadcaster.close()

    def get_service() -> CampusPulseService:
        return service

    async def current_user(authorization: Optional[str] = Header(None)) -> Principal:
        try:
            principal = decode_token(bearer_token(authorization), settings)
        except AuthenticationError as exc:
            raise StarletteHTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
        service.touch_user(principal)
        return principal

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        """Lightweight readiness probe for platform monitors."""

        return {"status": "ok"}

    # region Check-ins
    @app.get("/checkins")
    async def list_checkins(
        cohort: Optional[str] = None,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        checkins = svc.list_checkins(user.user_id, cohort)
        return envelope([c.to_dict() for c in checkins])

    @app.get("/checkins/me")
    async def own_checkin(
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        checkin = svc.own_checkin(user.user_id)
        return JSONResponse({"success": True, "data": checkin.to_dict() if checkin else None})

    @app.post("/checkins")
    async def report_checkin(
        body: CheckInBody,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        coordinates = coordinates_from(body.coordinates.model_dump() if body.coordinates else None)
        checkin = await svc.report_checkin(user.user_id, body.place_name, coordinates, body.status_tag)
        return envelope(checkin.to_dict(), "checked in", status_code=status.HTTP_201_CREATED)

    @app.patch("/checkins/{checkin_id}/status")
    async def update_status(
        checkin_id: str,
        body: StatusBody,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        if not await svc.update_status(checkin_id, user.user_id, body.status_tag):
            return not_found("check-in not found or no longer active")
        return envelope(message="status updated")

    @app.delete("/checkins/{checkin_id}")
    async def check_out(
        checkin_id: str,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        if not await svc.check_out(checkin_id, user.user_id):
            return not_found("check-in not found")
        return envelope(message="checked out")

    # endregion

    # region Events
    @app.get("/events")
    async def list_events(
        _: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        return envelope(svc.events_snapshot())

    @app.get("/events/{event_id}")
    async def get_event(
        event_id: str,
        _: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        event = svc.events.get(event_id)
        if event is None:
            return not_found("event not found")
        return envelope(event.to_dict())

    @app.post("/events")
    async def create_event(
        body: EventBody,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        event = await svc.create_event(
            user.user_id,
            body.title,
            body.description,
            body.category,
            from_millis(body.date) if body.date is not None else None,
            body.poll.to_draft() if body.poll else None,
        )
        return envelope(event.to_dict(), "event created", status_code=status.HTTP_201_CREATED)

    @app.patch("/events/{event_id}")
    async def update_event(
        event_id: str,
        body: EventUpdateBody,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        outcome = await svc.update_event(
            event_id,
            user.user_id,
            title=body.title,
            description=body.description,
            category=body.category,
            date=from_millis(body.date) if body.date is not None else None,
        )
        return outcome_response(outcome, "event updated")

    @app.post("/events/{event_id}/attend")
    async def attend_event(
        event_id: str,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        return outcome_response(await svc.attend(event_id, user.user_id), "attendance confirmed")

    @app.delete("/events/{event_id}/attend")
    async def unattend_event(
        event_id: str,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        return outcome_response(await svc.unattend(event_id, user.user_id), "attendance cancelled")

    @app.post("/events/{event_id}/poll/{option_id}/vote")
    async def vote(
        event_id: str,
        option_id: str,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        return outcome_response(await svc.vote(event_id, option_id, user.user_id), "vote recorded")

    @app.delete("/events/{event_id}")
    async def remove_event(
        event_id: str,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        return outcome_response(await svc.remove_event(event_id, user.user_id), "event deleted")

    # endregion

    # region Feedback
    @app.get("/feedback")
    async def list_feedback(
        _: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        return envelope([f.to_dict() for f in svc.list_feedback()])

    @app.post("/feedback")
    async def create_feedback(
        body: FeedbackBody,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        item = svc.create_feedback(user.user_id, body.title, body.description, body.category)
        return envelope(item.to_dict(), "feedback created", status_code=status.HTTP_201_CREATED)

    @app.post("/feedback/{feedback_id}/upvote")
    async def toggle_upvote(
        feedback_id: str,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        upvoted = svc.toggle_upvote(feedback_id, user.user_id)
        if upvoted is None:
            return not_found("feedback not found")
        return envelope({"upvoted": upvoted})

    @app.post("/feedback/{feedback_id}/comments")
    async def add_comment(
        feedback_id: str,
        body: CommentBody,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        comment = svc.add_comment(feedback_id, user.user_id, body.content)
        if comment is None:
            return not_found("feedback not found")
        return envelope(comment.to_dict(), "comment added", status_code=status.HTTP_201_CREATED)

    @app.delete("/feedback/{feedback_id}")
    async def remove_feedback(
        feedback_id: str,
        user: Principal = Depends(current_user),
        svc: CampusPulseService = Depends(get_service),
    ) -> JSONResponse:
        return outcome_response(svc.remove_feedback(feedback_id, user.user_id), "feedback deleted")

    # endregion

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket, token: Optional[str] = None) -> None:
        try:
            credential = token or bearer_token(websocket.headers.get("authorization"))
            principal = decode_token(credential, settings)
        except AuthenticationError as exc:
            logger.info("Rejected realtime handshake: %s", exc)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        try:
            connection = await service.broadcaster.connect(
                principal.user_id, websocket, service.initial_snapshot
            )
        except PersistenceError as exc:
            logger.error("Initial snapshot failed for %s: %r", principal.user_id, exc.__cause__)
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            return

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await service.broadcaster.disconnect(connection)

    return app


__all__ = ["create_app", "envelope"]
