import enum
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey

from roadworks.core.db import Base


class PartnerRole(str, enum.Enum):
    CONTRACTOR = "contractor"
    INSPECTOR = "inspector"
    REVIEWER = "reviewer"


class WorkOrderPartner(Base):
    """External partner attached to a work order. One row per (work order, partner)."""

    __tablename__ = "work_order_partners"

    work_order_id = Column(String, ForeignKey("work_orders.id"), primary_key=True)
    partner_id = Column(String, primary_key=True)
    partner_name = Column(String, nullable=False)
    role = Column(Enum(PartnerRole), default=PartnerRole.CONTRACTOR, nullable=False)

    assigned_by = Column(String, ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False)
