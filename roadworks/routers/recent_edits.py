"""
Recent road edits: paged list, live SSE stream and subscriber status, plus the
workflow audit stream.

Stream frames:

    event: connected     first frame, carries clientId and replayTruncated
    event: recent_edit   one RecentEdit, ``id:`` is the edit id
    event: workflow      one lifecycle record (workflow stream)
    event: resync        the client must re-list; sent on truncated replay or drop
    : heartbeat          comment frame while idle
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from roadworks.core.auth import get_current_user
from roadworks.core.config import settings
from roadworks.core.db import get_db
from roadworks.core.deps import get_bus
from roadworks.models.user import User
from roadworks.services.notification_bus import (
    ROAD_EDIT_CHANNEL,
    WORKFLOW_CHANNEL,
    NotificationBus,
    Subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recent-edits", tags=["recent-edits"])
workflow_router = APIRouter(prefix="/workflow-events", tags=["workflow"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def format_sse(data: Any, event: str | None = None, event_id: str | None = None) -> str:
    lines = []
    if event_id:
        lines.append(f"id: {event_id}")
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, default=str)}")
    return "\n".join(lines) + "\n\n"


async def stream_subscription(
    request: Request,
    bus: NotificationBus,
    sub: Subscription,
    event_name: str,
    heartbeat: float,
) -> AsyncIterator[str]:
    try:
        yield "retry: 3000\n\n"
        yield format_sse(
            {"clientId": sub.client_id, "channel": sub.channel, "replayTruncated": sub.replay_truncated},
            event="connected",
        )
        if sub.replay_truncated:
            yield format_sse({"reason": "replay truncated"}, event="resync")

        while True:
            if await request.is_disconnected():
                break
            batch = await sub.next_batch(heartbeat)
            for item in batch:
                yield format_sse(item, event=event_name, event_id=item.get("id"))
            if sub.closed:
                yield format_sse({"reason": sub.close_reason}, event="resync")
                break
            if not batch:
                yield ": heartbeat\n\n"
    finally:
        bus.unsubscribe(sub, reason="stream closed")


@router.get("")
def list_recent_edits(
    limit: int = Query(50, ge=1),
    since: Optional[str] = None,
    before: Optional[str] = None,
    db: Session = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
    _user: User = Depends(get_current_user),
):
    edits, has_more = bus.list_recent(db, limit=limit, since=since, before=before)
    data = [e.to_dict() for e in edits]
    return {
        "data": data,
        "meta": {
            "limit": min(limit, bus.max_list_limit),
            "hasMore": has_more,
            "nextCursor": data[-1]["id"] if data else None,
        },
    }


@router.get("/stream")
def stream_recent_edits(
    request: Request,
    since: Optional[str] = None,
    client_id: Optional[str] = Query(None, alias="clientId"),
    last_event_id: Optional[str] = Header(None, alias="Last-Event-ID"),
    db: Session = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
    _user: User = Depends(get_current_user),
):
    cursor = since or last_event_id
    sub = bus.subscribe(client_id or str(uuid.uuid4()), ROAD_EDIT_CHANNEL, since=cursor, db=db)
    return StreamingResponse(
        stream_subscription(request, bus, sub, "recent_edit", settings.SSE_HEARTBEAT_SECONDS),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/status")
def stream_status(bus: NotificationBus = Depends(get_bus), _user: User = Depends(get_current_user)):
    return bus.stats()


@workflow_router.get("/stream")
def stream_workflow_events(
    request: Request,
    client_id: Optional[str] = Query(None, alias="clientId"),
    bus: NotificationBus = Depends(get_bus),
    _user: User = Depends(get_current_user),
):
    sub = bus.subscribe(client_id or str(uuid.uuid4()), WORKFLOW_CHANNEL)
    return StreamingResponse(
        stream_subscription(request, bus, sub, "workflow", settings.SSE_HEARTBEAT_SECONDS),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
