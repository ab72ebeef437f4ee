"""
Role -> capability policy.

The engine never compares role names; it asks a ``CapabilityCheck`` whether a
role holds a capability. ``default_capability_check`` implements the coarse
role table below; a token- or policy-engine-backed check can be passed to
``LifecycleEngine`` instead.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Mapping

from roadworks.models.user import User, UserRole


@dataclass(frozen=True)
class Actor:
    """Who is asking. Resolved by the authentication layer."""

    user_id: str | None
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role.value)


class Capability(str, enum.Enum):
    EVENT_OPERATE = "event.operate"              # start, end, cancel, archive, duplicate
    EVENT_CLOSE = "event.close"                  # pending_review -> closed
    EVENT_DECIDE = "event.decide"                # record post-end decision
    WORKORDER_OPERATE = "workorder.operate"
    EVIDENCE_SUBMIT = "evidence.submit"
    EVIDENCE_REVIEW = "evidence.review"          # pending -> approved | rejected
    EVIDENCE_AUTHORITY_DECIDE = "evidence.authority_decide"  # approved -> accepted | rejected


CapabilityCheck = Callable[[str, Capability], bool]


DEFAULT_POLICY: Mapping[str, frozenset[Capability]] = {
    UserRole.OPERATOR.value: frozenset(
        {Capability.EVENT_OPERATE, Capability.WORKORDER_OPERATE, Capability.EVIDENCE_SUBMIT}
    ),
    UserRole.REVIEWER.value: frozenset({Capability.EVIDENCE_SUBMIT, Capability.EVIDENCE_REVIEW}),
    UserRole.AUTHORITY.value: frozenset(
        {
            Capability.EVENT_CLOSE,
            Capability.EVENT_DECIDE,
            Capability.EVIDENCE_AUTHORITY_DECIDE,
        }
    ),
    UserRole.ADMIN.value: frozenset(Capability),
}


def policy_capability_check(policy: Mapping[str, frozenset[Capability]]) -> CapabilityCheck:
    def _check(role: str, capability: Capability) -> bool:
        return capability in policy.get(role, frozenset())

    return _check


default_capability_check: CapabilityCheck = policy_capability_check(DEFAULT_POLICY)
