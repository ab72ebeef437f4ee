"""Records emitted on the workflow channel after a transition commits."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class DomainEvent:
    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        payload["type"] = type(self).__name__
        return payload


@dataclass(frozen=True)
class EventStatusChanged(DomainEvent):
    event_id: str
    from_status: str
    to_status: str
    actor: str
    at: datetime


@dataclass(frozen=True)
class EventDecisionRecorded(DomainEvent):
    event_id: str
    decision: str
    actor: str
    at: datetime


@dataclass(frozen=True)
class WorkOrderStatusChanged(DomainEvent):
    work_order_id: str
    event_id: str
    from_status: str
    to_status: str
    actor: str
    at: datetime


@dataclass(frozen=True)
class EvidenceDecisionMade(DomainEvent):
    evidence_id: str
    work_order_id: str
    decision: str
    user_role: str
    decided_at: datetime
    notes: str | None = field(default=None)
