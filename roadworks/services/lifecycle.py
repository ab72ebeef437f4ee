"""
Lifecycle Engine for construction events, their work orders and evidence.

Every status change follows the same path:

    read fresh state -> guard (table, capability, precondition)
    -> compare-and-swap write + audit row -> commit -> publish

A lost compare-and-swap is retried against the fresh state up to
``stale_retries`` times, unless the caller pinned the state it expected, in
which case it surfaces as ``StaleState`` straight away. A retry that finds
the winner moved the entity off the requested edge also reports
``StaleState``. Publishing to the notification bus happens after commit,
outside the store transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy.exc import IntegrityError

from roadworks.core.config import settings
from roadworks.core.errors import (
    InvalidInput,
    InvalidTransition,
    LifecycleError,
    NotFound,
    StaleState,
    Unauthorized,
)
from roadworks.models.construction_event import ConstructionEvent, EventStatus, PostEndDecision
from roadworks.models.evidence import Evidence, ReviewStatus
from roadworks.models.work_order import WorkOrder, WorkOrderStatus, WorkOrderType
from roadworks.models.work_order_partner import PartnerRole, WorkOrderPartner
from roadworks.services import guards
from roadworks.services.capabilities import Actor, Capability, CapabilityCheck, default_capability_check
from roadworks.services.domain_events import (
    DomainEvent,
    EventDecisionRecorded,
    EventStatusChanged,
    EvidenceDecisionMade,
    WorkOrderStatusChanged,
)
from roadworks.services.event_store import EventStore, utcnow
from roadworks.services.notification_bus import NotificationBus

logger = logging.getLogger(__name__)

EDITABLE_EVENT_STATUSES = frozenset({EventStatus.PLANNED, EventStatus.ACTIVE})
WORK_ORDER_PARENT_STATUSES = frozenset({EventStatus.PLANNED, EventStatus.ACTIVE})
DUPLICABLE_EVENT_STATUSES = frozenset({EventStatus.CLOSED, EventStatus.ARCHIVED})

EVENT_FIELDS = ("name", "restriction_type", "ward", "department", "start_date", "end_date",
                "ref_asset_id", "ref_asset_type", "requires_evidence_sign_off")
WORK_ORDER_FIELDS = ("title", "description", "assigned_dept", "due_date")
REQUIRED_EVENT_FIELDS = ("name", "restriction_type", "start_date", "end_date", "requires_evidence_sign_off")


class _LostRace(Exception):
    def __init__(self, observed):
        self.observed = observed


def _coerce(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidInput(f"{field} must be one of: {allowed}")


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


class LifecycleEngine:
    def __init__(
        self,
        store: EventStore,
        bus: NotificationBus | None = None,
        can: CapabilityCheck = default_capability_check,
        stale_retries: int | None = None,
    ):
        self.store = store
        self.bus = bus
        self.can = can
        self.stale_retries = settings.STALE_RETRY_LIMIT if stale_retries is None else stale_retries

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    def _require(self, actor: Actor, capability: Capability) -> None:
        if not self.can(actor.role, capability):
            raise Unauthorized(actor.role, capability.value)

    def _publish(self, events: Iterable[DomainEvent]) -> None:
        if self.bus is None:
            return
        for event in events:
            self.bus.publish_workflow(event)

    def _retrying(self, entity: str, entity_id: str, pinned, status_of: Callable[[], Any], step: Callable[[], Any]):
        """
        Run ``step`` until it commits or runs out of retries.

        Once a race has been lost, a guard refusal on the retry means the
        winner moved the entity somewhere this request no longer applies to.
        That is reported as ``StaleState`` against the status first observed,
        not as the guard error.
        """
        attempts = 0
        first_seen = None
        while True:
            try:
                return step()
            except _LostRace as lost:
                self.store.rollback()
                if first_seen is None:
                    first_seen = lost.observed
                if pinned is not None or attempts >= self.stale_retries:
                    actual = status_of()
                    raise StaleState(entity, entity_id, first_seen.value, getattr(actual, "value", actual))
                attempts += 1
                logger.info("compare-and-swap lost, retrying", extra={"code": "StaleState"})
            except StaleState:
                self.store.rollback()
                raise
            except LifecycleError as error:
                self.store.rollback()
                if first_seen is None:
                    raise
                actual = status_of()
                if actual == first_seen:
                    raise
                raise StaleState(entity, entity_id, first_seen.value, getattr(actual, "value", actual)) from error

    def _reject(self, error: LifecycleError, **extra) -> None:
        logger.info("transition rejected: %s", error.message, extra={"code": error.code, **extra})
        raise error

    def _validate_dates(self, start: datetime | None, end: datetime | None) -> None:
        if start is not None and end is not None and _as_utc(end) < _as_utc(start):
            raise InvalidInput("end_date must not be before start_date")

    def _resolve_assets(self, asset_ids: Iterable[str] | None):
        found, missing = self.store.get_road_assets(list(asset_ids or []))
        if missing:
            raise InvalidInput(f"Invalid road asset IDs: {', '.join(missing)}")
        return found

    # ------------------------------------------------------------------
    # construction events
    # ------------------------------------------------------------------
    def create_event(
        self,
        actor: Actor,
        *,
        name: str,
        restriction_type: str,
        start_date: datetime,
        end_date: datetime,
        ward: str | None = None,
        department: str | None = None,
        road_asset_ids: Iterable[str] | None = None,
        ref_asset_id: str | None = None,
        ref_asset_type: str | None = None,
        requires_evidence_sign_off: bool = False,
    ) -> ConstructionEvent:
        self._require(actor, Capability.EVENT_OPERATE)
        if not name or not name.strip():
            raise InvalidInput("name is required")
        self._validate_dates(start_date, end_date)
        if (ref_asset_id is None) != (ref_asset_type is None):
            raise InvalidInput("Provide both ref_asset_id and ref_asset_type, or neither")

        event = ConstructionEvent(
            id=_new_id("CE"),
            name=name.strip(),
            restriction_type=restriction_type,
            ward=ward,
            department=department,
            created_by=actor.user_id,
            status=EventStatus.PLANNED,
            post_end_decision=PostEndDecision.PENDING,
            requires_evidence_sign_off=requires_evidence_sign_off,
            start_date=start_date,
            end_date=end_date,
            ref_asset_id=ref_asset_id,
            ref_asset_type=ref_asset_type,
        )
        event.road_assets = self._resolve_assets(road_asset_ids)
        self.store.add(event)
        self.store.log_workflow_event(
            event_id=event.id,
            entity_type="event",
            entity_id=event.id,
            event_type="EventCreated",
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            to_status=EventStatus.PLANNED.value,
            message=f"Event created: {event.name}",
        )
        self.store.commit()
        logger.info("event created", extra={"event_id": event.id, "actor_role": actor.role})
        return self.store.get_event(event.id)

    def update_event(self, event_id: str, actor: Actor, road_asset_ids: Iterable[str] | None = None, **changes) -> ConstructionEvent:
        """Edit descriptive fields and asset links. Status is never written here."""
        self._require(actor, Capability.EVENT_OPERATE)
        unknown = set(changes) - set(EVENT_FIELDS)
        if unknown:
            raise InvalidInput(f"Fields not editable: {', '.join(sorted(unknown))}")

        status, _, _ = self.store.event_state(event_id)
        if status not in EDITABLE_EVENT_STATUSES:
            raise InvalidTransition("event", status.value, "edit", "only planned or active events can be edited")

        event = self.store.get_event(event_id)
        self._validate_dates(changes.get("start_date", event.start_date), changes.get("end_date", event.end_date))
        for key in REQUIRED_EVENT_FIELDS:
            if key in changes and (changes[key] is None or (isinstance(changes[key], str) and not changes[key].strip())):
                raise InvalidInput(f"{key} cannot be blank")

        # Pin the status for the duration of the edit
        fields = dict(changes)
        fields["updated_at"] = utcnow()
        if not self.store._swap_event_status(event_id, status, status, **fields):
            self.store.rollback()
            raise StaleState("event", event_id, status.value, getattr(self.store.event_state(event_id)[0], "value", None))

        if road_asset_ids is not None:
            event = self.store.get_event(event_id)
            event.road_assets = self._resolve_assets(road_asset_ids)
        self.store.commit()
        return self.store.get_event(event_id)

    def transition_event(
        self,
        event_id: str,
        target: EventStatus | str,
        actor: Actor,
        expected: EventStatus | str | None = None,
    ) -> ConstructionEvent:
        target = _coerce(EventStatus, target, "to")
        pinned = _coerce(EventStatus, expected, "expected") if expected is not None else None
        changed: dict[str, Any] = {}

        def step():
            current, decision, _ = self.store.event_state(event_id)
            if pinned is not None and current != pinned:
                raise StaleState("event", event_id, pinned.value, current.value)

            verdict = guards.guard_event_transition(event_id, current, target, actor.role, decision, self.can)
            if not verdict.allowed:
                self._reject(verdict.error, event_id=event_id, from_status=current.value, to_status=target.value)

            now = utcnow()
            fields: dict[str, Any] = {"updated_at": now}
            if guards.RESET_DECISION in verdict.effects:
                fields.update(
                    post_end_decision=PostEndDecision.PENDING,
                    decided_by=None,
                    decided_at=None,
                    decision_notes=None,
                )
            if guards.STAMP_ARCHIVED_AT in verdict.effects:
                fields["archived_at"] = now
            if guards.CLEAR_ARCHIVED_AT in verdict.effects:
                fields["archived_at"] = None

            if not self.store._swap_event_status(event_id, current, target, **fields):
                raise _LostRace(current)

            self.store.log_workflow_event(
                event_id=event_id,
                entity_type="event",
                entity_id=event_id,
                event_type="EventStatusChanged",
                actor_user_id=actor.user_id,
                actor_role=actor.role,
                from_status=current.value,
                to_status=target.value,
                message=f"Status {current.value} -> {target.value}",
                at=now,
            )
            self.store.commit()
            changed.update(current=current, at=now)

        self._retrying("event", event_id, pinned, lambda: self.store.event_state(event_id)[0], step)

        logger.info(
            "event transition committed",
            extra={
                "event_id": event_id,
                "from_status": changed["current"].value,
                "to_status": target.value,
                "actor_role": actor.role,
            },
        )
        self._publish([
            EventStatusChanged(
                event_id=event_id,
                from_status=changed["current"].value,
                to_status=target.value,
                actor=actor.user_id or actor.role,
                at=changed["at"],
            )
        ])
        return self.store.get_event(event_id)

    def archive_event(self, event_id: str, actor: Actor) -> ConstructionEvent:
        return self.transition_event(event_id, EventStatus.ARCHIVED, actor)

    def unarchive_event(self, event_id: str, actor: Actor) -> ConstructionEvent:
        return self.transition_event(event_id, EventStatus.CLOSED, actor)

    def record_decision(
        self,
        event_id: str,
        decision: PostEndDecision | str,
        actor: Actor,
        notes: str | None = None,
    ) -> ConstructionEvent:
        decision = _coerce(PostEndDecision, decision, "postEndDecision")
        if decision == PostEndDecision.PENDING:
            raise InvalidInput("postEndDecision must be no-change or permanent-change")

        status, current_decision, _ = self.store.event_state(event_id)
        if status != EventStatus.PENDING_REVIEW:
            raise InvalidTransition(
                "event decision", status.value, decision.value, "decisions are recorded while the event is pending_review"
            )
        if current_decision != PostEndDecision.PENDING:
            raise InvalidTransition(
                "event decision", current_decision.value, decision.value, "post-end decision has already been made"
            )
        self._require(actor, Capability.EVENT_DECIDE)

        now = utcnow()
        won = self.store._swap_event_decision(
            event_id,
            EventStatus.PENDING_REVIEW,
            PostEndDecision.PENDING,
            decision,
            decided_by=actor.user_id or actor.role,
            decided_at=now,
            decision_notes=notes,
            updated_at=now,
        )
        if not won:
            self.store.rollback()
            fresh_status, fresh_decision, _ = self.store.event_state(event_id)
            raise StaleState("event", event_id, "pending_review/pending", f"{fresh_status.value}/{fresh_decision.value}")

        self.store.log_workflow_event(
            event_id=event_id,
            entity_type="event",
            entity_id=event_id,
            event_type="EventDecisionRecorded",
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            from_status=PostEndDecision.PENDING.value,
            to_status=decision.value,
            message=notes,
            at=now,
        )
        self.store.commit()
        logger.info("post-end decision recorded: %s", decision.value, extra={"event_id": event_id, "actor_role": actor.role})
        self._publish([EventDecisionRecorded(event_id=event_id, decision=decision.value, actor=actor.user_id or actor.role, at=now)])
        return self.store.get_event(event_id)

    def duplicate_event(
        self,
        event_id: str,
        actor: Actor,
        *,
        name: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> ConstructionEvent:
        """Spawn a new planned event prefilled from a closed one. Work orders stay behind."""
        self._require(actor, Capability.EVENT_OPERATE)
        source = self.store.get_event(event_id)
        if source.status not in DUPLICABLE_EVENT_STATUSES:
            raise InvalidTransition("event", source.status.value, "duplicate", "only closed events can be duplicated")

        start = start_date or source.start_date
        end = end_date or source.end_date
        self._validate_dates(start, end)

        copy = ConstructionEvent(
            id=_new_id("CE"),
            name=(name or f"{source.name} (copy)").strip(),
            restriction_type=source.restriction_type,
            ward=source.ward,
            department=source.department,
            created_by=actor.user_id,
            status=EventStatus.PLANNED,
            post_end_decision=PostEndDecision.PENDING,
            requires_evidence_sign_off=source.requires_evidence_sign_off,
            start_date=start,
            end_date=end,
            ref_asset_id=source.ref_asset_id,
            ref_asset_type=source.ref_asset_type,
            duplicated_from_id=source.id,
        )
        copy.road_assets = list(source.road_assets)
        self.store.add(copy)
        self.store.log_workflow_event(
            event_id=copy.id,
            entity_type="event",
            entity_id=copy.id,
            event_type="EventDuplicated",
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            to_status=EventStatus.PLANNED.value,
            message=f"Duplicated from {source.id}",
        )
        self.store.commit()
        logger.info("event duplicated from %s", event_id, extra={"event_id": copy.id, "actor_role": actor.role})
        return self.store.get_event(copy.id)

    # ------------------------------------------------------------------
    # work orders
    # ------------------------------------------------------------------
    def create_work_order(
        self,
        event_id: str,
        actor: Actor,
        *,
        title: str,
        type: WorkOrderType | str,
        description: str | None = None,
        assigned_dept: str | None = None,
        due_date: datetime | None = None,
    ) -> WorkOrder:
        self._require(actor, Capability.WORKORDER_OPERATE)
        wo_type = _coerce(WorkOrderType, type, "type")
        if not title or not title.strip():
            raise InvalidInput("title is required")

        status, _, _ = self.store.event_state(event_id)
        if status not in WORK_ORDER_PARENT_STATUSES:
            raise InvalidTransition(
                "event", status.value, "add_work_order", "work orders are created under planned or active events"
            )

        wo = WorkOrder(
            id=_new_id("WO"),
            event_id=event_id,
            title=title.strip(),
            description=description,
            type=wo_type,
            status=WorkOrderStatus.DRAFT,
            assigned_dept=assigned_dept,
            due_date=due_date,
            created_by=actor.user_id,
        )
        self.store.add(wo)
        # Holds the parent's status steady until commit
        if not self.store._swap_event_status(event_id, status, status):
            self.store.rollback()
            raise StaleState("event", event_id, status.value, getattr(self.store.event_state(event_id)[0], "value", None))
        self.store.log_workflow_event(
            event_id=event_id,
            entity_type="work_order",
            entity_id=wo.id,
            event_type="WorkOrderCreated",
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            to_status=WorkOrderStatus.DRAFT.value,
            message=wo.title,
        )
        self.store.commit()
        logger.info("work order created", extra={"event_id": event_id, "work_order_id": wo.id})
        return self.store.get_work_order(wo.id)

    def update_work_order(self, work_order_id: str, actor: Actor, **changes) -> WorkOrder:
        self._require(actor, Capability.WORKORDER_OPERATE)
        unknown = set(changes) - set(WORK_ORDER_FIELDS)
        if unknown:
            raise InvalidInput(f"Fields not editable: {', '.join(sorted(unknown))}")
        if "title" in changes and not (changes["title"] or "").strip():
            raise InvalidInput("title cannot be blank")

        status, _ = self.store.work_order_state(work_order_id)
        if status in guards.WORK_ORDER_TERMINAL:
            raise InvalidTransition("work_order", status.value, "edit", "terminal work orders are read-only")

        self._hold_work_order(work_order_id, status, **changes, updated_at=utcnow())
        self.store.commit()
        return self.store.get_work_order(work_order_id)

    def _hold_work_order(self, work_order_id: str, status: WorkOrderStatus, **fields) -> None:
        # Same-status swap: fails if a transition landed since ``status`` was read
        if not self.store._swap_work_order_status(work_order_id, status, status, **fields):
            self.store.rollback()
            raise StaleState("work_order", work_order_id, status.value, self.store.work_order_state(work_order_id)[0].value)

    def add_work_order_partner(
        self,
        work_order_id: str,
        actor: Actor,
        *,
        partner_id: str,
        partner_name: str,
        role: PartnerRole | str = PartnerRole.CONTRACTOR,
    ) -> WorkOrderPartner:
        self._require(actor, Capability.WORKORDER_OPERATE)
        partner_role = _coerce(PartnerRole, role, "role")
        if not partner_id or not partner_id.strip():
            raise InvalidInput("partner_id is required")
        if not partner_name or not partner_name.strip():
            raise InvalidInput("partner_name is required")
        partner_id = partner_id.strip()

        status, event_id = self.store.work_order_state(work_order_id)
        if status in guards.WORK_ORDER_TERMINAL:
            raise InvalidTransition("work_order", status.value, "add_partner", "terminal work orders are read-only")
        if self.store.find_partner(work_order_id, partner_id) is not None:
            raise InvalidInput("Partner already assigned to this work order", partner_id=partner_id)

        now = utcnow()
        self.store.add(
            WorkOrderPartner(
                work_order_id=work_order_id,
                partner_id=partner_id,
                partner_name=partner_name.strip(),
                role=partner_role,
                assigned_by=actor.user_id,
                assigned_at=now,
            )
        )
        try:
            self.store.flush()
        except IntegrityError:
            # another request attached the same partner first
            self.store.rollback()
            raise InvalidInput("Partner already assigned to this work order", partner_id=partner_id)
        self._hold_work_order(work_order_id, status)
        self.store.log_workflow_event(
            event_id=event_id,
            entity_type="work_order",
            entity_id=work_order_id,
            event_type="WorkOrderPartnerAdded",
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            message=f"{partner_role.value}: {partner_id}",
            at=now,
        )
        self.store.commit()
        logger.info("partner added", extra={"work_order_id": work_order_id, "partner_id": partner_id})
        return self.store.find_partner(work_order_id, partner_id)

    def remove_work_order_partner(self, work_order_id: str, partner_id: str, actor: Actor) -> None:
        self._require(actor, Capability.WORKORDER_OPERATE)
        status, event_id = self.store.work_order_state(work_order_id)
        if status in guards.WORK_ORDER_TERMINAL:
            raise InvalidTransition("work_order", status.value, "remove_partner", "terminal work orders are read-only")
        partner = self.store.find_partner(work_order_id, partner_id)
        if partner is None:
            raise NotFound("Partner", partner_id)

        self.store.delete(partner)
        self._hold_work_order(work_order_id, status)
        self.store.log_workflow_event(
            event_id=event_id,
            entity_type="work_order",
            entity_id=work_order_id,
            event_type="WorkOrderPartnerRemoved",
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            message=partner_id,
        )
        self.store.commit()
        logger.info("partner removed", extra={"work_order_id": work_order_id, "partner_id": partner_id})

    def assign_work_order(self, work_order_id: str, actor: Actor, assigned_dept: str) -> WorkOrder:
        if not assigned_dept or not assigned_dept.strip():
            raise InvalidInput("assigned_dept is required")
        return self.transition_work_order(
            work_order_id,
            WorkOrderStatus.ASSIGNED,
            actor,
            expected=WorkOrderStatus.DRAFT,
            assigned_dept=assigned_dept.strip(),
        )

    def transition_work_order(
        self,
        work_order_id: str,
        target: WorkOrderStatus | str,
        actor: Actor,
        expected: WorkOrderStatus | str | None = None,
        **extra_fields,
    ) -> WorkOrder:
        target = _coerce(WorkOrderStatus, target, "to")
        pinned = _coerce(WorkOrderStatus, expected, "expected") if expected is not None else None
        changed: dict[str, Any] = {}

        def step():
            current, event_id = self.store.work_order_state(work_order_id)
            if pinned is not None and current != pinned:
                raise StaleState("work_order", work_order_id, pinned.value, current.value)

            _, _, requires_sign_off = self.store.event_state(event_id)
            accepted = 0
            if target == WorkOrderStatus.COMPLETED and requires_sign_off:
                accepted = self.store.count_accepted_evidence(work_order_id)

            verdict = guards.guard_work_order_transition(
                work_order_id, current, target, actor.role, requires_sign_off, accepted, self.can
            )
            if not verdict.allowed:
                self._reject(
                    verdict.error, work_order_id=work_order_id, from_status=current.value, to_status=target.value
                )

            now = utcnow()
            fields: dict[str, Any] = dict(extra_fields)
            fields["updated_at"] = now
            if guards.STAMP_ASSIGNED_AT in verdict.effects:
                fields["assigned_at"] = now
                fields.setdefault("assigned_by", actor.user_id)
            if guards.STAMP_STARTED_AT in verdict.effects:
                fields["started_at"] = now
            if guards.STAMP_COMPLETED_AT in verdict.effects:
                fields["completed_at"] = now

            if not self.store._swap_work_order_status(work_order_id, current, target, **fields):
                raise _LostRace(current)

            self.store.log_workflow_event(
                event_id=event_id,
                entity_type="work_order",
                entity_id=work_order_id,
                event_type="WorkOrderStatusChanged",
                actor_user_id=actor.user_id,
                actor_role=actor.role,
                from_status=current.value,
                to_status=target.value,
                message=f"Status {current.value} -> {target.value}",
                at=now,
            )
            self.store.commit()
            changed.update(current=current, event_id=event_id, at=now)

        self._retrying(
            "work_order", work_order_id, pinned, lambda: self.store.work_order_state(work_order_id)[0], step
        )

        logger.info(
            "work order transition committed",
            extra={
                "work_order_id": work_order_id,
                "from_status": changed["current"].value,
                "to_status": target.value,
                "actor_role": actor.role,
            },
        )
        self._publish([
            WorkOrderStatusChanged(
                work_order_id=work_order_id,
                event_id=changed["event_id"],
                from_status=changed["current"].value,
                to_status=target.value,
                actor=actor.user_id or actor.role,
                at=changed["at"],
            )
        ])
        return self.store.get_work_order(work_order_id)

    # ------------------------------------------------------------------
    # evidence
    # ------------------------------------------------------------------
    def submit_evidence(
        self,
        work_order_id: str,
        actor: Actor,
        *,
        type: str,
        file_ref: str,
        title: str | None = None,
        description: str | None = None,
        file_name: str | None = None,
        mime_type: str | None = None,
        size_bytes: int | None = None,
    ) -> Evidence:
        self._require(actor, Capability.EVIDENCE_SUBMIT)
        status, event_id = self.store.work_order_state(work_order_id)
        if status in guards.WORK_ORDER_TERMINAL:
            raise InvalidTransition(
                "work_order", status.value, "submit_evidence", "evidence cannot be added to a terminal work order"
            )

        now = utcnow()
        ev = Evidence(
            id=_new_id("EV"),
            work_order_id=work_order_id,
            type=type,
            title=title,
            description=description,
            file_ref=file_ref,
            file_name=file_name,
            mime_type=mime_type,
            size_bytes=size_bytes,
            submitted_by=actor.user_id,
            submitter_role=actor.role,
            submitted_at=now,
            review_status=ReviewStatus.PENDING,
        )
        self.store.add(ev)
        self.store.log_workflow_event(
            event_id=event_id,
            entity_type="evidence",
            entity_id=ev.id,
            event_type="EvidenceSubmitted",
            actor_user_id=actor.user_id,
            actor_role=actor.role,
            to_status=ReviewStatus.PENDING.value,
            message=f"{type} submitted for {work_order_id}",
            at=now,
        )
        self.store.commit()
        logger.info("evidence submitted", extra={"work_order_id": work_order_id, "evidence_id": ev.id})
        return self.store.get_evidence(ev.id)

    def decide_evidence(
        self,
        evidence_id: str,
        decision: ReviewStatus | str,
        actor: Actor,
        notes: str | None = None,
        expected: ReviewStatus | str | None = None,
    ) -> Evidence:
        decision = _coerce(ReviewStatus, decision, "decision")
        pinned = _coerce(ReviewStatus, expected, "expected") if expected is not None else None
        changed: dict[str, Any] = {}

        def step():
            current, work_order_id = self.store.evidence_state(evidence_id)
            if pinned is not None and current != pinned:
                raise StaleState("evidence", evidence_id, pinned.value, current.value)

            verdict = guards.guard_evidence_decision(current, decision, actor.role, self.can)
            if not verdict.allowed:
                self._reject(verdict.error, evidence_id=evidence_id, from_status=current.value, to_status=decision.value)

            now = utcnow()
            fields: dict[str, Any] = {}
            if guards.STAMP_PEER_REVIEW in verdict.effects:
                fields.update(reviewed_by=actor.user_id or actor.role, reviewed_at=now, review_notes=notes)
            if guards.STAMP_AUTHORITY_DECISION in verdict.effects:
                fields.update(decision_by=actor.role, decision_at=now, decision_notes=notes)

            if not self.store._swap_evidence_status(evidence_id, current, decision, **fields):
                raise _LostRace(current)

            _, event_id = self.store.work_order_state(work_order_id)
            self.store.log_workflow_event(
                event_id=event_id,
                entity_type="evidence",
                entity_id=evidence_id,
                event_type="EvidenceDecisionMade",
                actor_user_id=actor.user_id,
                actor_role=actor.role,
                from_status=current.value,
                to_status=decision.value,
                message=notes,
                at=now,
            )
            self.store.commit()
            changed.update(work_order_id=work_order_id, at=now)

        self._retrying("evidence", evidence_id, pinned, lambda: self.store.evidence_state(evidence_id)[0], step)

        logger.info(
            "evidence decision committed: %s", decision.value,
            extra={"evidence_id": evidence_id, "actor_role": actor.role},
        )
        self._publish([
            EvidenceDecisionMade(
                evidence_id=evidence_id,
                work_order_id=changed["work_order_id"],
                decision=decision.value,
                user_role=actor.role,
                decided_at=changed["at"],
                notes=notes,
            )
        ])
        return self.store.get_evidence(evidence_id)
