import enum
from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String, Table, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from roadworks.core.db import Base


class EventStatus(str, enum.Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    PENDING_REVIEW = "pending_review"
    CLOSED = "closed"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


class PostEndDecision(str, enum.Enum):
    PENDING = "pending"
    NO_CHANGE = "no-change"
    PERMANENT_CHANGE = "permanent-change"


event_road_assets = Table(
    "event_road_assets",
    Base.metadata,
    Column("event_id", String, ForeignKey("construction_events.id"), primary_key=True),
    Column("road_asset_id", String, ForeignKey("road_assets.id"), primary_key=True),
)


class ConstructionEvent(Base):
    __tablename__ = "construction_events"

    id = Column(String, primary_key=True)  # CE-xxxxxxxx
    name = Column(String, nullable=False)
    restriction_type = Column(String, nullable=False)  # full_closure, lane_restriction, ...
    ward = Column(String, index=True, nullable=True)
    department = Column(String, index=True, nullable=True)
    created_by = Column(String, ForeignKey("users.id"), index=True, nullable=True)

    # Written only through EventStore compare-and-swap
    status = Column(Enum(EventStatus), default=EventStatus.PLANNED, nullable=False, index=True)
    post_end_decision = Column(Enum(PostEndDecision), default=PostEndDecision.PENDING, nullable=False)
    decision_notes = Column(Text, nullable=True)
    decided_by = Column(String, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)

    requires_evidence_sign_off = Column(Boolean, default=False, nullable=False)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True, index=True)

    ref_asset_id = Column(String, nullable=True)
    ref_asset_type = Column(String, nullable=True)  # road, park, facility, ...

    duplicated_from_id = Column(String, ForeignKey("construction_events.id"), nullable=True)

    road_assets = relationship("RoadAsset", secondary=event_road_assets, lazy="selectin")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
