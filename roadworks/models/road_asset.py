from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func

from roadworks.core.db import Base


class RoadAsset(Base):
    __tablename__ = "road_assets"

    id = Column(String, primary_key=True)  # RA-xxxxxxxx
    name = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    ward = Column(String, index=True, nullable=True)
    road_type = Column(String, nullable=True)  # arterial, collector, local, ...
    status = Column(String, default="active", nullable=False)

    bbox = Column(JSON, nullable=True)  # [minLng, minLat, maxLng, maxLat]

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    # Fields whose change counts as a meaningful edit for notifications
    TRACKED_FIELDS = ("name", "display_name", "ward", "road_type", "status", "bbox")
