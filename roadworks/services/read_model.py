"""Read-only views over events, work orders and the audit log."""

from __future__ import annotations

from typing import Any

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from roadworks.core.errors import NotFound
from roadworks.models.construction_event import ConstructionEvent, EventStatus, PostEndDecision
from roadworks.models.evidence import Evidence, ReviewStatus
from roadworks.models.road_asset import RoadAsset
from roadworks.models.work_order import WorkOrder, WorkOrderStatus
from roadworks.models.work_order_partner import WorkOrderPartner
from roadworks.models.workflow_event import WorkflowEvent

# Default list ordering: what needs attention first
_STATUS_ORDER = case(
    (ConstructionEvent.status == EventStatus.ACTIVE, 0),
    (ConstructionEvent.status == EventStatus.PLANNED, 1),
    (ConstructionEvent.status == EventStatus.PENDING_REVIEW, 2),
    (ConstructionEvent.status == EventStatus.CLOSED, 3),
    (ConstructionEvent.status == EventStatus.CANCELLED, 4),
    else_=5,
)


def _iso(dt):
    return dt.isoformat() if dt else None


def asset_summary(asset: RoadAsset) -> dict[str, Any]:
    return {
        "id": asset.id,
        "name": asset.name,
        "displayName": asset.display_name,
        "ward": asset.ward,
        "roadType": asset.road_type,
        "status": asset.status,
        "bbox": asset.bbox,
    }


def event_summary(event: ConstructionEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "name": event.name,
        "status": event.status.value,
        "restrictionType": event.restriction_type,
        "ward": event.ward,
        "department": event.department,
        "startDate": _iso(event.start_date),
        "endDate": _iso(event.end_date),
        "postEndDecision": event.post_end_decision.value,
        "decisionNotes": event.decision_notes,
        "decidedBy": event.decided_by,
        "decidedAt": _iso(event.decided_at),
        "requiresEvidenceSignOff": bool(event.requires_evidence_sign_off),
        "archivedAt": _iso(event.archived_at),
        "refAssetId": event.ref_asset_id,
        "refAssetType": event.ref_asset_type,
        "duplicatedFromId": event.duplicated_from_id,
        "roadAssetIds": [a.id for a in event.road_assets],
        "createdBy": event.created_by,
        "createdAt": _iso(event.created_at),
        "updatedAt": _iso(event.updated_at),
    }


def evidence_summary(ev: Evidence) -> dict[str, Any]:
    return {
        "id": ev.id,
        "workOrderId": ev.work_order_id,
        "type": ev.type,
        "title": ev.title,
        "description": ev.description,
        "fileName": ev.file_name,
        "mimeType": ev.mime_type,
        "sizeBytes": ev.size_bytes,
        "submittedBy": ev.submitted_by,
        "submitterRole": ev.submitter_role,
        "submittedAt": _iso(ev.submitted_at),
        "reviewStatus": ev.review_status.value,
        "reviewedBy": ev.reviewed_by,
        "reviewedAt": _iso(ev.reviewed_at),
        "reviewNotes": ev.review_notes,
        "decisionBy": ev.decision_by,
        "decisionAt": _iso(ev.decision_at),
        "decisionNotes": ev.decision_notes,
        "downloadUrl": f"/evidence/{ev.id}/download",
    }


def work_order_summary(wo: WorkOrder) -> dict[str, Any]:
    return {
        "id": wo.id,
        "eventId": wo.event_id,
        "title": wo.title,
        "description": wo.description,
        "type": wo.type.value,
        "status": wo.status.value,
        "assignedDept": wo.assigned_dept,
        "assignedBy": wo.assigned_by,
        "assignedAt": _iso(wo.assigned_at),
        "dueDate": _iso(wo.due_date),
        "startedAt": _iso(wo.started_at),
        "completedAt": _iso(wo.completed_at),
        "createdBy": wo.created_by,
        "createdAt": _iso(wo.created_at),
        "updatedAt": _iso(wo.updated_at),
    }


def partner_summary(partner: WorkOrderPartner) -> dict[str, Any]:
    return {
        "workOrderId": partner.work_order_id,
        "partnerId": partner.partner_id,
        "partnerName": partner.partner_name,
        "role": partner.role.value,
        "assignedBy": partner.assigned_by,
        "assignedAt": _iso(partner.assigned_at),
    }


def status_counts(db: Session) -> dict[str, int]:
    rows = (
        db.query(ConstructionEvent.status, func.count(ConstructionEvent.id))
        .group_by(ConstructionEvent.status)
        .all()
    )
    counts = {s.value: 0 for s in EventStatus}
    for status, n in rows:
        counts[status.value] = n
    counts["archivedCount"] = counts[EventStatus.ARCHIVED.value]
    return counts


def list_events(
    db: Session,
    status: EventStatus | None = None,
    ward: str | None = None,
    department: str | None = None,
    q: str | None = None,
    include_archived: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    query = db.query(ConstructionEvent)
    if status is not None:
        query = query.filter(ConstructionEvent.status == status)
    elif not include_archived:
        query = query.filter(ConstructionEvent.status != EventStatus.ARCHIVED)
    if ward:
        query = query.filter(ConstructionEvent.ward == ward)
    if department:
        query = query.filter(ConstructionEvent.department == department)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(ConstructionEvent.name.ilike(like), ConstructionEvent.id.ilike(like)))

    total = query.count()
    rows = (
        query.order_by(_STATUS_ORDER, ConstructionEvent.start_date.asc(), ConstructionEvent.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    archived = db.query(ConstructionEvent).filter(ConstructionEvent.status == EventStatus.ARCHIVED).count()
    return {
        "data": [event_summary(e) for e in rows],
        "meta": {"total": total, "archivedCount": archived, "limit": limit, "offset": offset},
    }


def event_detail(db: Session, event_id: str) -> dict[str, Any]:
    event = db.query(ConstructionEvent).filter(ConstructionEvent.id == event_id).first()
    if not event:
        raise NotFound("Event", event_id)

    wo_counts = {s.value: 0 for s in WorkOrderStatus}
    for status, n in (
        db.query(WorkOrder.status, func.count(WorkOrder.id))
        .filter(WorkOrder.event_id == event_id)
        .group_by(WorkOrder.status)
        .all()
    ):
        wo_counts[status.value] = n

    pending_evidence = (
        db.query(Evidence)
        .join(WorkOrder, Evidence.work_order_id == WorkOrder.id)
        .filter(WorkOrder.event_id == event_id, Evidence.review_status == ReviewStatus.PENDING)
        .count()
    )

    ref_asset = None
    if event.ref_asset_id and event.ref_asset_type == "road":
        row = db.query(RoadAsset).filter(RoadAsset.id == event.ref_asset_id).first()
        if row:
            ref_asset = asset_summary(row)

    data = event_summary(event)
    data.update(
        roadAssets=[asset_summary(a) for a in event.road_assets],
        refAsset=ref_asset,
        workOrderCounts=wo_counts,
        pendingEvidenceCount=pending_evidence,
        decisionRequired=(
            event.status == EventStatus.PENDING_REVIEW and event.post_end_decision == PostEndDecision.PENDING
        ),
    )
    return data


def list_work_orders(
    db: Session,
    event_id: str | None = None,
    status: WorkOrderStatus | None = None,
) -> list[dict[str, Any]]:
    query = db.query(WorkOrder)
    if event_id:
        query = query.filter(WorkOrder.event_id == event_id)
    if status is not None:
        query = query.filter(WorkOrder.status == status)
    return [work_order_summary(w) for w in query.order_by(WorkOrder.created_at.desc(), WorkOrder.id.asc()).all()]


def list_evidence(db: Session, work_order_id: str) -> list[dict[str, Any]]:
    rows = (
        db.query(Evidence)
        .filter(Evidence.work_order_id == work_order_id)
        .order_by(Evidence.submitted_at.asc())
        .all()
    )
    return [evidence_summary(e) for e in rows]


def list_partners(db: Session, work_order_id: str) -> list[dict[str, Any]]:
    rows = (
        db.query(WorkOrderPartner)
        .filter(WorkOrderPartner.work_order_id == work_order_id)
        .order_by(WorkOrderPartner.assigned_at.asc(), WorkOrderPartner.partner_id.asc())
        .all()
    )
    return [partner_summary(p) for p in rows]


def work_order_detail(db: Session, work_order_id: str) -> dict[str, Any]:
    wo = db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
    if not wo:
        raise NotFound("Work order", work_order_id)
    event = db.query(ConstructionEvent).filter(ConstructionEvent.id == wo.event_id).first()

    evidence = list_evidence(db, wo.id)
    requires = bool(event.requires_evidence_sign_off) if event else False
    accepted = sum(1 for e in evidence if e["reviewStatus"] == ReviewStatus.ACCEPTED_BY_AUTHORITY.value)

    data = work_order_summary(wo)
    data.update(
        evidence=evidence,
        partners=list_partners(db, wo.id),
        requiresEvidenceSignOff=requires,
        signOffSatisfied=(not requires) or accepted > 0,
    )
    return data


def event_history(db: Session, event_id: str) -> list[dict[str, Any]]:
    if not db.query(ConstructionEvent.id).filter(ConstructionEvent.id == event_id).first():
        raise NotFound("Event", event_id)
    rows = (
        db.query(WorkflowEvent)
        .filter(WorkflowEvent.event_id == event_id)
        .order_by(WorkflowEvent.created_at.asc())
        .all()
    )
    return [
        {
            "id": r.id,
            "entityType": r.entity_type,
            "entityId": r.entity_id,
            "eventType": r.event_type,
            "fromStatus": r.from_status,
            "toStatus": r.to_status,
            "actorUserId": r.actor_user_id,
            "actorRole": r.actor_role,
            "message": r.message,
            "createdAt": _iso(r.created_at),
        }
        for r in rows
    ]
