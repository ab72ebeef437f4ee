from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from roadworks.core.auth import get_current_user
from roadworks.core.db import get_db
from roadworks.core.deps import get_actor, get_engine
from roadworks.core.errors import LifecycleError
from roadworks.models.user import User
from roadworks.models.work_order import WorkOrderStatus
from roadworks.schemas.event import TransitionRequest
from roadworks.schemas.work_order import PartnerAdd, WorkOrderAssign, WorkOrderCreate, WorkOrderUpdate
from roadworks.services import read_model
from roadworks.services.capabilities import Actor
from roadworks.services.lifecycle import LifecycleEngine
from roadworks.services.storage import check_evidence_upload, discard, store_evidence_file

router = APIRouter(prefix="/workorders", tags=["work-orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_work_order(
    payload: WorkOrderCreate,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    data = payload.model_dump()
    event_id = data.pop("event_id")
    wo = engine.create_work_order(event_id, actor, **data)
    return read_model.work_order_detail(db, wo.id)


@router.get("")
def list_work_orders(
    event_id: Optional[str] = Query(None, alias="eventId"),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    wo_status = None
    if status_filter:
        try:
            wo_status = WorkOrderStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid status")
    return read_model.list_work_orders(db, event_id=event_id, status=wo_status)


@router.get("/{work_order_id}")
def get_work_order(work_order_id: str, db: Session = Depends(get_db), _user: User = Depends(get_current_user)):
    return read_model.work_order_detail(db, work_order_id)


@router.put("/{work_order_id}")
def update_work_order(
    work_order_id: str,
    payload: WorkOrderUpdate,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.update_work_order(work_order_id, actor, **payload.model_dump(exclude_unset=True))
    return read_model.work_order_detail(db, work_order_id)


@router.post("/{work_order_id}/assign")
def assign_work_order(
    work_order_id: str,
    payload: WorkOrderAssign,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.assign_work_order(work_order_id, actor, payload.assigned_dept)
    return read_model.work_order_detail(db, work_order_id)


@router.post("/{work_order_id}/partners", status_code=status.HTTP_201_CREATED)
def add_partner(
    work_order_id: str,
    payload: PartnerAdd,
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    partner = engine.add_work_order_partner(
        work_order_id, actor, partner_id=payload.partner_id, partner_name=payload.partner_name, role=payload.role
    )
    return read_model.partner_summary(partner)


@router.delete("/{work_order_id}/partners/{partner_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_partner(
    work_order_id: str,
    partner_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.remove_work_order_partner(work_order_id, partner_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{work_order_id}/transition")
def transition_work_order(
    work_order_id: str,
    payload: TransitionRequest,
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    engine.transition_work_order(work_order_id, payload.to, actor, expected=payload.expected)
    return read_model.work_order_detail(db, work_order_id)


@router.post("/{work_order_id}/evidence", status_code=status.HTTP_201_CREATED)
def upload_evidence(
    work_order_id: str,
    file: UploadFile = File(...),
    type: str = Form("photo"),  # photo, document, report, cad, other
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    engine: LifecycleEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    check_evidence_upload(type, file.content_type)

    stored = store_evidence_file(work_order_id, file)
    try:
        ev = engine.submit_evidence(
            work_order_id,
            actor,
            type=type,
            file_ref=stored.path,
            title=title,
            description=description,
            file_name=stored.file_name,
            mime_type=stored.mime_type,
            size_bytes=stored.size_bytes,
        )
    except LifecycleError:
        discard(stored.path)
        raise
    return read_model.evidence_summary(ev)


@router.get("/{work_order_id}/evidence")
def list_work_order_evidence(
    work_order_id: str,
    db: Session = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    # 404 for unknown work orders rather than an empty list
    read_model.work_order_detail(db, work_order_id)
    return read_model.list_evidence(db, work_order_id)
