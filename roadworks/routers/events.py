from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from roadworks.core.auth import get_current_user
from roadworks.core.db import get_db
from roadworks.core.deps import get_actor, get_engine
from roadworks.models.construction_event import EventStatus
from roadworks.models.user import User
from roadworks.schemas.event import (
    DecisionRequest,
    DuplicateRequest,
    EventCreate,
    EventUpdate,
    TransitionRequest,
)
from roadworks.services import read_model
from roadworks.services.capabilities import Actor
from roadworks.services.lifecycle import LifecycleEngine

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    event = engine.create_event(actor, **payload.model_dump())
    return read_model.event_detail(db, event.id)


@router.get("")
def list_events(
    status_filter: Optional[str] = Query(None, alias="status"),
    ward: Optional[str] = None,
    department: Optional[str] = None,
    q: Optional[str] = None,
    include_archived: bool = Query(False, alias="includeArchived"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    event_status = None
    if status_filter:
        try:
            event_status = EventStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid status")

    return read_model.list_events(
        db,
        status=event_status,
        ward=ward,
        department=department,
        q=q,
        include_archived=include_archived,
        limit=limit,
        offset=offset,
    )


@router.get("/stats")
def event_stats(db: Session = Depends(get_db), _user: User = Depends(get_current_user)):
    return read_model.status_counts(db)


@router.get("/{event_id}")
def get_event(event_id: str, db: Session = Depends(get_db), _user: User = Depends(get_current_user)):
    return read_model.event_detail(db, event_id)


@router.put("/{event_id}")
def update_event(
    event_id: str,
    payload: EventUpdate,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    changes = payload.model_dump(exclude_unset=True)
    road_asset_ids = changes.pop("road_asset_ids", None)
    engine.update_event(event_id, actor, road_asset_ids=road_asset_ids, **changes)
    return read_model.event_detail(db, event_id)


@router.post("/{event_id}/transition")
def transition_event(
    event_id: str,
    payload: TransitionRequest,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.transition_event(event_id, payload.to, actor, expected=payload.expected)
    return read_model.event_detail(db, event_id)


@router.post("/{event_id}/decision")
def record_decision(
    event_id: str,
    payload: DecisionRequest,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.record_decision(event_id, payload.post_end_decision, actor, notes=payload.notes)
    return read_model.event_detail(db, event_id)


@router.post("/{event_id}/archive")
def archive_event(
    event_id: str,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.archive_event(event_id, actor)
    return read_model.event_detail(db, event_id)


@router.post("/{event_id}/unarchive")
def unarchive_event(
    event_id: str,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.unarchive_event(event_id, actor)
    return read_model.event_detail(db, event_id)


@router.post("/{event_id}/duplicate", status_code=status.HTTP_201_CREATED)
def duplicate_event(
    event_id: str,
    payload: Optional[DuplicateRequest] = None,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    overrides = payload.model_dump(exclude_none=True) if payload else {}
    copy = engine.duplicate_event(event_id, actor, **overrides)
    return read_model.event_detail(db, copy.id)


@router.get("/{event_id}/history")
def event_history(event_id: str, db: Session = Depends(get_db), _user: User = Depends(get_current_user)):
    return read_model.event_history(db, event_id)
