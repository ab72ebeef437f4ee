"""
Event Store: durable records of construction events, work orders and evidence.

Wraps one SQLAlchemy session. Status columns are written exclusively through
the ``_swap_*`` compare-and-swap helpers, which the lifecycle engine calls; they
issue ``UPDATE ... WHERE id = :id AND status = :expected`` so two writers
starting from the same status cannot both win.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from roadworks.core.errors import NotFound
from roadworks.models.construction_event import ConstructionEvent, EventStatus, PostEndDecision
from roadworks.models.evidence import Evidence, ReviewStatus
from roadworks.models.road_asset import RoadAsset
from roadworks.models.work_order import WorkOrder, WorkOrderStatus
from roadworks.models.work_order_partner import WorkOrderPartner
from roadworks.models.workflow_event import WorkflowEvent

__all__ = ["EventStore", "utcnow"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventStore:
    def __init__(self, db: Session):
        self.db = db

    # -------- reads --------
    def get_event(self, event_id: str) -> ConstructionEvent:
        event = self.db.query(ConstructionEvent).filter(ConstructionEvent.id == event_id).first()
        if not event:
            raise NotFound("Event", event_id)
        return event

    def get_work_order(self, work_order_id: str) -> WorkOrder:
        wo = self.db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
        if not wo:
            raise NotFound("Work order", work_order_id)
        return wo

    def get_evidence(self, evidence_id: str) -> Evidence:
        ev = self.db.query(Evidence).filter(Evidence.id == evidence_id).first()
        if not ev:
            raise NotFound("Evidence", evidence_id)
        return ev

    def find_partner(self, work_order_id: str, partner_id: str) -> WorkOrderPartner | None:
        return (
            self.db.query(WorkOrderPartner)
            .filter(WorkOrderPartner.work_order_id == work_order_id, WorkOrderPartner.partner_id == partner_id)
            .first()
        )

    def get_road_assets(self, asset_ids: list[str]) -> tuple[list[RoadAsset], list[str]]:
        """Return (found, missing_ids) preserving the requested order."""
        if not asset_ids:
            return [], []
        rows = self.db.query(RoadAsset).filter(RoadAsset.id.in_(asset_ids)).all()
        by_id = {r.id: r for r in rows}
        found = [by_id[a] for a in dict.fromkeys(asset_ids) if a in by_id]
        missing = [a for a in asset_ids if a not in by_id]
        return found, missing

    # Column queries bypass the identity map, so these always see the latest
    # committed status even if the session holds an older copy of the row.
    def event_state(self, event_id: str) -> tuple[EventStatus, PostEndDecision, bool]:
        row = (
            self.db.query(
                ConstructionEvent.status,
                ConstructionEvent.post_end_decision,
                ConstructionEvent.requires_evidence_sign_off,
            )
            .filter(ConstructionEvent.id == event_id)
            .first()
        )
        if not row:
            raise NotFound("Event", event_id)
        return row[0], row[1], bool(row[2])

    def work_order_state(self, work_order_id: str) -> tuple[WorkOrderStatus, str]:
        row = (
            self.db.query(WorkOrder.status, WorkOrder.event_id)
            .filter(WorkOrder.id == work_order_id)
            .first()
        )
        if not row:
            raise NotFound("Work order", work_order_id)
        return row[0], row[1]

    def evidence_state(self, evidence_id: str) -> tuple[ReviewStatus, str]:
        row = (
            self.db.query(Evidence.review_status, Evidence.work_order_id)
            .filter(Evidence.id == evidence_id)
            .first()
        )
        if not row:
            raise NotFound("Evidence", evidence_id)
        return row[0], row[1]

    def count_accepted_evidence(self, work_order_id: str) -> int:
        # Evaluated at transition time inside the caller's transaction
        return (
            self.db.query(Evidence)
            .filter(
                Evidence.work_order_id == work_order_id,
                Evidence.review_status == ReviewStatus.ACCEPTED_BY_AUTHORITY,
            )
            .count()
        )

    # -------- writes --------
    def add(self, entity: Any) -> None:
        self.db.add(entity)

    def delete(self, entity: Any) -> None:
        self.db.delete(entity)

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def log_workflow_event(
        self,
        *,
        event_id: str,
        entity_type: str,
        entity_id: str,
        event_type: str,
        actor_user_id: str | None,
        actor_role: str | None,
        from_status: str | None = None,
        to_status: str | None = None,
        message: str | None = None,
        at: datetime | None = None,
    ) -> WorkflowEvent:
        row = WorkflowEvent(
            id=str(uuid.uuid4()),
            event_id=event_id,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            message=message,
            created_at=at or utcnow(),
        )
        self.db.add(row)
        return row

    # -------- compare-and-swap (lifecycle engine only) --------
    def _swap(self, model, status_attr: str, entity_id: str, expected, new, fields: dict) -> bool:
        values = dict(fields)
        values[status_attr] = new
        changed = (
            self.db.query(model)
            .filter(model.id == entity_id, getattr(model, status_attr) == expected)
            .update(values, synchronize_session=False)
        )
        return changed == 1

    def _swap_event_status(self, event_id: str, expected: EventStatus, new: EventStatus, **fields) -> bool:
        return self._swap(ConstructionEvent, "status", event_id, expected, new, fields)

    def _swap_event_decision(self, event_id: str, status: EventStatus, expected, new, **fields) -> bool:
        values = dict(fields)
        values["post_end_decision"] = new
        changed = (
            self.db.query(ConstructionEvent)
            .filter(
                ConstructionEvent.id == event_id,
                ConstructionEvent.status == status,
                ConstructionEvent.post_end_decision == expected,
            )
            .update(values, synchronize_session=False)
        )
        return changed == 1

    def _swap_work_order_status(
        self, work_order_id: str, expected: WorkOrderStatus, new: WorkOrderStatus, **fields
    ) -> bool:
        return self._swap(WorkOrder, "status", work_order_id, expected, new, fields)

    def _swap_evidence_status(self, evidence_id: str, expected: ReviewStatus, new: ReviewStatus, **fields) -> bool:
        return self._swap(Evidence, "review_status", evidence_id, expected, new, fields)
