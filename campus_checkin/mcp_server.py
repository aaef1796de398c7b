"""MCP server exposing campus check-in tools."""

from __future__ import annotations

import asyncio
import os

from mcp.server.fastmcp import FastMCP

from .api import serialize_attendance, serialize_event
from .config import load_settings
from .service import CampusCheckinService, build_service


def create_mcp(service: CampusCheckinService) -> FastMCP:
    mcp = FastMCP("campus-checkin")
    start_lock = asyncio.Lock()

    async def ensure_started() -> None:
        async with start_lock:
            if not service.attendance.running:
                await service.start()

    @mcp.tool()
    async def list_upcoming_events() -> dict:
        """Return upcoming events with their RSVP and check-in lists."""

        await ensure_started()
        return {
            "events": [serialize_event(e) for e in service.upcoming_events()],
            "error": service.attendance.last_error,
        }

    @mcp.tool()
    async def check_in(token: str) -> dict:
        """Validate a scanned QR token and check its holder in."""

        await ensure_started()
        outcome = await service.check_in(token)
        return {"success": outcome.success, "message": outcome.message, "user_name": outcome.user_name}

    @mcp.tool()
    async def get_attendance(event_id: str) -> dict:
        """Return RSVP and check-in counts for an event."""

        await ensure_started()
        return serialize_attendance(await service.attendance_for(event_id))

    @mcp.tool()
    async def issue_token(event_id: str, user_id: str) -> dict:
        """Return a fresh check-in token for a user who has RSVP'd."""

        await ensure_started()
        return {"token": await service.issue_token(event_id, user_id)}

    return mcp


def run() -> None:  # pragma: no cover - io bound
    settings = load_settings(os.getenv("CAMPUS_CHECKIN_ENV"))
    create_mcp(build_service(settings)).run()


if __name__ == "__main__":  # pragma: no cover
    run()


__all__ = ["create_mcp", "run"]
