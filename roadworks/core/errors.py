"""
Typed errors raised by the lifecycle engine and notification bus.

Every error carries a stable ``code`` (returned to clients verbatim) and the
HTTP status the API layer maps it to. Services raise these; ``main.py``
registers one handler for the whole family.

    InvalidTransition        409  edge not in the state table; never retried
    StaleState               409  lost a compare-and-swap race; retry with fresh state
    DecisionRequired         409  close attempted while postEndDecision is pending
    EvidenceSignOffRequired  409  work order completion without accepted evidence
    Unauthorized             403  role lacks the capability
    NotFound                 404  unknown id
    InvalidInput             400  well-formed request violating a field rule
"""

from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
    code = "LifecycleError"
    http_status = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        body.update(self.extra)
        return body


class InvalidTransition(LifecycleError):
    code = "InvalidTransition"
    http_status = 409

    def __init__(self, entity: str, current: str, target: str, reason: str | None = None) -> None:
        msg = f"Invalid {entity} transition: {current} -> {target}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg, entity=entity, current=current, target=target)
        self.entity = entity
        self.current = current
        self.target = target


class StaleState(LifecycleError):
    code = "StaleState"
    http_status = 409

    def __init__(self, entity: str, entity_id: str, expected: str, actual: str | None) -> None:
        super().__init__(
            f"{entity} {entity_id} is no longer {expected} (now {actual}); retry against the fresh state",
            entity=entity,
            expected=expected,
            actual=actual,
        )
        self.actual = actual


class DecisionRequired(LifecycleError):
    """Closing is blocked until a post-end decision is recorded."""

    code = "DecisionRequired"
    http_status = 409

    def __init__(self, event_id: str) -> None:
        super().__init__(
            f"Event {event_id} needs a post-end decision before it can be closed",
            eventId=event_id,
            decisionRequired=True,
        )


class EvidenceSignOffRequired(LifecycleError):
    code = "EvidenceSignOffRequired"
    http_status = 409

    def __init__(self, work_order_id: str) -> None:
        super().__init__(
            f"Work order {work_order_id} needs at least one evidence item accepted by the authority "
            "before it can be completed",
            workOrderId=work_order_id,
        )


class Unauthorized(LifecycleError):
    code = "Unauthorized"
    http_status = 403

    def __init__(self, role: str, capability: str) -> None:
        super().__init__(f"Role {role} lacks capability {capability}", role=role, capability=capability)


class NotFound(LifecycleError):
    code = "NotFound"
    http_status = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} not found", resource=resource, id=resource_id)


class InvalidInput(LifecycleError):
    code = "InvalidInput"
    http_status = 400
