from datetime import datetime
from typing import Optional

from pydantic import Field

from roadworks.schemas.event import CamelModel


class WorkOrderCreate(CamelModel):
    event_id: str
    title: str = Field(min_length=1, max_length=200)
    type: str = "inspection"
    description: Optional[str] = None
    assigned_dept: Optional[str] = None
    due_date: Optional[datetime] = None


class WorkOrderUpdate(CamelModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    assigned_dept: Optional[str] = None
    due_date: Optional[datetime] = None


class WorkOrderAssign(CamelModel):
    assigned_dept: str = Field(min_length=1)


class EvidenceDecisionRequest(CamelModel):
    decision: str
    user_role: Optional[str] = None
    notes: Optional[str] = None
    expected: Optional[str] = None


class PartnerAdd(CamelModel):
    partner_id: str = Field(min_length=1)
    partner_name: str = Field(min_length=1)
    role: str = "contractor"  # contractor, inspector, reviewer
