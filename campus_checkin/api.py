"""FastAPI application exposing the campus check-in REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings, load_settings
from .errors import AppError, ErrorKind
from .models import AttendanceSnapshot, CreateEventInput, Event
from .notifications import PushBatch
from .service import CampusCheckinService, build_service

ERROR_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.AUTH_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.AUTH_TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.STORE_PERMISSION: status.HTTP_403_FORBIDDEN,
    ErrorKind.STORE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.STORE_TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.STORE_VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNCLASSIFIED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class EventCreateRequest(BaseModel):
    title: str
    description: str
    date: datetime
    location: str
    image_url: Optional[str] = None


class EventUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[datetime] = None
    location: Optional[str] = None
    image_url: Optional[str] = None


class CheckInRequest(BaseModel):
    token: str


class NotificationRequest(BaseModel):
    title: str
    body: str


class UserNotificationRequest(NotificationRequest):
    data: Optional[Dict[str, Any]] = None


class PushTokenRequest(BaseModel):
    token: str


def serialize_event(event: Event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "date": event.date.isoformat(),
        "location": event.location,
        "created_by": event.created_by,
        "rsvps": sorted(event.rsvps),
        "checked_in": sorted(event.checked_in),
        "image_url": event.image_url,
        "created_at": event.created_at.isoformat() if event.created_at else None,
        "updated_at": event.updated_at.isoformat() if event.updated_at else None,
    }


def serialize_attendance(snapshot: AttendanceSnapshot) -> Dict[str, Any]:
    return {
        "event_id": snapshot.event_id,
        "total_rsvps": snapshot.total_rsvps,
        "total_checked_in": snapshot.total_checked_in,
        "attendance_rate": round(snapshot.attendance_rate, 2),
        "rsvp_users": snapshot.rsvp_users,
        "checked_in_users": snapshot.checked_in_users,
        "summary": snapshot.summary,
    }


def serialize_batch(batch: PushBatch) -> Dict[str, Any]:
    return {
        "messages": batch.messages(),
        "no_token_count": batch.no_token_count,
        "invalid_token_count": len(batch.invalid_tokens),
    }


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[CampusCheckinService] = None,
) -> FastAPI:
    settings = settings or load_settings()
    service = service or build_service(settings)

    async def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> None:
        if x_api_key != settings.api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")

    async def acting_user(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
        if not x_user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing user id")
        return x_user_id

    app = FastAPI(title="Campus Check-in API", version="1.0.0")

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            content={"detail": exc.user_message, "code": exc.code},
        )

    @app.on_event("startup")
    async def startup_event() -> None:
        await service.start()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await service.close()

    def get_service() -> CampusCheckinService:
        return service

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/connectivity")
    async def get_connectivity(
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        return svc.connectivity_status()

    @app.get("/api/events")
    async def list_events(
        refresh: bool = False,
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        events = await svc.refresh_events() if refresh else svc.upcoming_events()
        return {"events": [serialize_event(e) for e in events], "error": svc.attendance.last_error}

    @app.post("/api/events", status_code=status.HTTP_201_CREATED)
    async def create_event(
        body: EventCreateRequest,
        user_id: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        event = await svc.create_event(
            CreateEventInput(
                title=body.title,
                description=body.description,
                date=body.date,
                location=body.location,
                image_url=body.image_url,
            ),
            user_id,
        )
        return serialize_event(event)

    @app.get("/api/events/{event_id}")
    async def get_event(
        event_id: str,
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        return serialize_event(await svc.get_event(event_id))

    @app.patch("/api/events/{event_id}")
    async def update_event(
        event_id: str,
        body: EventUpdateRequest,
        user_id: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        updates = body.model_dump(exclude_unset=True)
        event = await svc.update_event(event_id, updates, user_id)
        return serialize_event(event)

    @app.delete("/api/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_event(
        event_id: str,
        user_id: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> None:
        await svc.delete_event(event_id, user_id)

    @app.post("/api/events/{event_id}/rsvp")
    async def add_rsvp(
        event_id: str,
        user_id: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        await svc.rsvp(event_id, user_id)
        return {"event_id": event_id, "user_id": user_id, "rsvp": True}

    @app.delete("/api/events/{event_id}/rsvp")
    async def remove_rsvp(
        event_id: str,
        user_id: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        await svc.cancel_rsvp(event_id, user_id)
        return {"event_id": event_id, "user_id": user_id, "rsvp": False}

    @app.get("/api/events/{event_id}/token")
    async def get_token(
        event_id: str,
        user_id: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        return {"token": await svc.issue_token(event_id, user_id)}

    @app.post("/api/checkin")
    async def check_in(
        body: CheckInRequest,
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        outcome = await svc.check_in(body.token)
        return {"success": outcome.success, "message": outcome.message, "user_name": outcome.user_name}

    @app.get("/api/events/{event_id}/attendance")
    async def get_attendance(
        event_id: str,
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        return serialize_attendance(await svc.attendance_for(event_id))

    @app.post("/api/events/{event_id}/notifications")
    async def build_notifications(
        event_id: str,
        body: NotificationRequest,
        user_id: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        batch = await svc.notification_batch(event_id, body.title, body.body, user_id)
        return serialize_batch(batch)

    @app.put("/api/users/{user_id}/push-token", status_code=status.HTTP_204_NO_CONTENT)
    async def register_push_token(
        user_id: str,
        body: PushTokenRequest,
        acting: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> None:
        await svc.register_push_token(user_id, body.token, acting)

    @app.post("/api/users/{user_id}/notifications")
    async def build_user_notifications(
        user_id: str,
        body: UserNotificationRequest,
        acting: str = Depends(acting_user),
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        batch = await svc.user_notification_batch(user_id, body.title, body.body, body.data, acting)
        return serialize_batch(batch)

    @app.get("/api/users/{user_id}/events")
    async def get_user_events(
        user_id: str,
        created: bool = False,
        _: None = Depends(verify_api_key),
        svc: CampusCheckinService = Depends(get_service),
    ) -> dict[str, object]:
        events: List[Event] = (
            await svc.events_by_creator(user_id) if created else svc.my_events(user_id)
        )
        return {"user_id": user_id, "events": [serialize_event(e) for e in events]}

    return app


__all__ = ["create_app", "serialize_event", "serialize_attendance", "serialize_batch"]
