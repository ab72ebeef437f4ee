import enum
from sqlalchemy import Column, String, DateTime, Enum, Text, ForeignKey
from sqlalchemy.sql import func

from roadworks.core.db import Base


class WorkOrderStatus(str, enum.Enum):
    DRAFT = "draft"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WorkOrderType(str, enum.Enum):
    INSPECTION = "inspection"
    REPAIR = "repair"
    UPDATE = "update"


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id = Column(String, primary_key=True)  # WO-xxxxxxxx
    event_id = Column(String, ForeignKey("construction_events.id"), index=True, nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Enum(WorkOrderType), nullable=False)

    # Written only through EventStore compare-and-swap
    status = Column(Enum(WorkOrderStatus), default=WorkOrderStatus.DRAFT, nullable=False, index=True)

    assigned_dept = Column(String, nullable=True)
    assigned_by = Column(String, nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
