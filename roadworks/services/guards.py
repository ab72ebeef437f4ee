"""
Transition guards: pure decision functions over the three state tables.

Each guard answers "may ``role`` move this entity from ``current`` to
``target``?" and returns a ``GuardDecision``. Checks always run in the same
order so that the answer is independent of who asks when the edge does not
exist:

1. the edge must be in the table (else ``InvalidTransition``)
2. the role must hold the edge's capability (else ``Unauthorized``)
3. business preconditions (decision recorded, evidence signed off)

Guards never touch the store; the engine feeds them the facts they need and
applies the returned effects inside its compare-and-swap.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from roadworks.core.errors import (
    DecisionRequired,
    EvidenceSignOffRequired,
    InvalidTransition,
    LifecycleError,
    Unauthorized,
)
from roadworks.models.construction_event import EventStatus, PostEndDecision
from roadworks.models.evidence import ReviewStatus
from roadworks.models.work_order import WorkOrderStatus
from roadworks.services.capabilities import Capability, CapabilityCheck

# Effects the engine applies alongside a permitted status write
RESET_DECISION = "reset_decision"
STAMP_ARCHIVED_AT = "stamp_archived_at"
CLEAR_ARCHIVED_AT = "clear_archived_at"
OPEN_DECISION_WORKFLOW = "open_decision_workflow"
STAMP_ASSIGNED_AT = "stamp_assigned_at"
STAMP_STARTED_AT = "stamp_started_at"
STAMP_COMPLETED_AT = "stamp_completed_at"
STAMP_PEER_REVIEW = "stamp_peer_review"
STAMP_AUTHORITY_DECISION = "stamp_authority_decision"


# current -> {target: capability}
EVENT_TRANSITIONS: Mapping[EventStatus, Mapping[EventStatus, Capability]] = {
    EventStatus.PLANNED: {
        EventStatus.ACTIVE: Capability.EVENT_OPERATE,
        EventStatus.CANCELLED: Capability.EVENT_OPERATE,
    },
    EventStatus.ACTIVE: {
        EventStatus.PENDING_REVIEW: Capability.EVENT_OPERATE,
    },
    EventStatus.PENDING_REVIEW: {
        EventStatus.CLOSED: Capability.EVENT_CLOSE,
    },
    EventStatus.CLOSED: {
        EventStatus.ARCHIVED: Capability.EVENT_OPERATE,
    },
    EventStatus.ARCHIVED: {
        EventStatus.CLOSED: Capability.EVENT_OPERATE,
    },
    EventStatus.CANCELLED: {},
}

WORK_ORDER_TRANSITIONS: Mapping[WorkOrderStatus, Mapping[WorkOrderStatus, Capability]] = {
    WorkOrderStatus.DRAFT: {
        WorkOrderStatus.ASSIGNED: Capability.WORKORDER_OPERATE,
        WorkOrderStatus.CANCELLED: Capability.WORKORDER_OPERATE,
    },
    WorkOrderStatus.ASSIGNED: {
        WorkOrderStatus.IN_PROGRESS: Capability.WORKORDER_OPERATE,
        WorkOrderStatus.CANCELLED: Capability.WORKORDER_OPERATE,
    },
    WorkOrderStatus.IN_PROGRESS: {
        WorkOrderStatus.COMPLETED: Capability.WORKORDER_OPERATE,
        WorkOrderStatus.CANCELLED: Capability.WORKORDER_OPERATE,
    },
    WorkOrderStatus.COMPLETED: {},
    WorkOrderStatus.CANCELLED: {},
}

EVIDENCE_TRANSITIONS: Mapping[ReviewStatus, Mapping[ReviewStatus, Capability]] = {
    ReviewStatus.PENDING: {
        ReviewStatus.APPROVED: Capability.EVIDENCE_REVIEW,
        ReviewStatus.REJECTED: Capability.EVIDENCE_REVIEW,
    },
    ReviewStatus.APPROVED: {
        ReviewStatus.ACCEPTED_BY_AUTHORITY: Capability.EVIDENCE_AUTHORITY_DECIDE,
        ReviewStatus.REJECTED: Capability.EVIDENCE_AUTHORITY_DECIDE,
    },
    ReviewStatus.REJECTED: {},
    ReviewStatus.ACCEPTED_BY_AUTHORITY: {},
}

WORK_ORDER_TERMINAL = frozenset({WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED})


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    error: LifecycleError | None = None
    effects: tuple[str, ...] = field(default_factory=tuple)


def _deny(error: LifecycleError, *effects: str) -> GuardDecision:
    return GuardDecision(allowed=False, error=error, effects=effects)


def _edge(table, entity: str, current, target, role: str, can: CapabilityCheck) -> GuardDecision | None:
    capability = table.get(current, {}).get(target)
    if capability is None:
        return _deny(InvalidTransition(entity, current.value, target.value))
    if not can(role, capability):
        return _deny(Unauthorized(role, capability.value))
    return None


def guard_event_transition(
    event_id: str,
    current: EventStatus,
    target: EventStatus,
    role: str,
    decision: PostEndDecision,
    can: CapabilityCheck,
) -> GuardDecision:
    denied = _edge(EVENT_TRANSITIONS, "event", current, target, role, can)
    if denied:
        return denied

    if target == EventStatus.PENDING_REVIEW:
        return GuardDecision(allowed=True, effects=(RESET_DECISION,))

    if current == EventStatus.PENDING_REVIEW and target == EventStatus.CLOSED:
        if decision == PostEndDecision.PENDING:
            return _deny(DecisionRequired(event_id), OPEN_DECISION_WORKFLOW)
        return GuardDecision(allowed=True)

    if target == EventStatus.ARCHIVED:
        return GuardDecision(allowed=True, effects=(STAMP_ARCHIVED_AT,))

    if current == EventStatus.ARCHIVED:
        return GuardDecision(allowed=True, effects=(CLEAR_ARCHIVED_AT,))

    return GuardDecision(allowed=True)


def guard_work_order_transition(
    work_order_id: str,
    current: WorkOrderStatus,
    target: WorkOrderStatus,
    role: str,
    requires_sign_off: bool,
    accepted_evidence: int,
    can: CapabilityCheck,
) -> GuardDecision:
    denied = _edge(WORK_ORDER_TRANSITIONS, "work_order", current, target, role, can)
    if denied:
        return denied

    if target == WorkOrderStatus.ASSIGNED:
        return GuardDecision(allowed=True, effects=(STAMP_ASSIGNED_AT,))
    if target == WorkOrderStatus.IN_PROGRESS:
        return GuardDecision(allowed=True, effects=(STAMP_STARTED_AT,))
    if target == WorkOrderStatus.COMPLETED:
        if requires_sign_off and accepted_evidence < 1:
            return _deny(EvidenceSignOffRequired(work_order_id))
        return GuardDecision(allowed=True, effects=(STAMP_COMPLETED_AT,))
    return GuardDecision(allowed=True)


def guard_evidence_decision(
    current: ReviewStatus,
    decision: ReviewStatus,
    role: str,
    can: CapabilityCheck,
) -> GuardDecision:
    denied = _edge(EVIDENCE_TRANSITIONS, "evidence", current, decision, role, can)
    if denied:
        return denied
    if current == ReviewStatus.PENDING:
        return GuardDecision(allowed=True, effects=(STAMP_PEER_REVIEW,))
    return GuardDecision(allowed=True, effects=(STAMP_AUTHORITY_DECISION,))
