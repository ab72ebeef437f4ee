from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts both camelCase (web client) and snake_case keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class EventCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    restriction_type: str = Field(min_length=1, max_length=64)
    start_date: datetime
    end_date: datetime
    ward: Optional[str] = None
    department: Optional[str] = None
    road_asset_ids: list[str] = Field(default_factory=list)
    ref_asset_id: Optional[str] = None
    ref_asset_type: Optional[str] = None
    requires_evidence_sign_off: bool = False


class EventUpdate(CamelModel):
    name: Optional[str] = Field(default=None, max_length=200)
    restriction_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    ward: Optional[str] = None
    department: Optional[str] = None
    road_asset_ids: Optional[list[str]] = None
    ref_asset_id: Optional[str] = None
    ref_asset_type: Optional[str] = None
    requires_evidence_sign_off: Optional[bool] = None


class TransitionRequest(CamelModel):
    to: str
    expected: Optional[str] = None


class DecisionRequest(CamelModel):
    post_end_decision: str
    notes: Optional[str] = None


class DuplicateRequest(CamelModel):
    name: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
