from sqlalchemy import Column, String, DateTime, ForeignKey, Text

from roadworks.core.db import Base


class WorkflowEvent(Base):
    """Audit trail of lifecycle transitions, written in the same transaction as the transition."""

    __tablename__ = "workflow_events"

    id = Column(String, primary_key=True)  # uuid
    event_id = Column(String, ForeignKey("construction_events.id"), index=True, nullable=False)
    entity_type = Column(String, nullable=False)  # event, work_order, evidence
    entity_id = Column(String, index=True, nullable=False)

    actor_user_id = Column(String, ForeignKey("users.id"), index=True, nullable=True)
    actor_role = Column(String, nullable=True)

    # EventStatusChanged, EventDecisionRecorded, EventCreated, EventDuplicated,
    # WorkOrderCreated, WorkOrderStatusChanged, WorkOrderPartnerAdded,
    # WorkOrderPartnerRemoved, EvidenceSubmitted, EvidenceDecisionMade
    event_type = Column(String, nullable=False)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=True)
    message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
