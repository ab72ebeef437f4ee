import enum
from datetime import timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String

from roadworks.core.db import Base


class EditType(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RecentEdit(Base):
    """Append-only log of road asset mutations. Rows are never updated."""

    __tablename__ = "recent_edits"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    id = Column(String, unique=True, index=True, nullable=False)  # REL-xxxxxxxx

    # No FK: delete logs must outlive the asset
    road_asset_id = Column(String, index=True, nullable=False)
    edit_type = Column(String, nullable=False)

    road_name = Column(String, nullable=True)
    road_display_name = Column(String, nullable=True)
    road_ward = Column(String, nullable=True)
    road_type = Column(String, nullable=True)
    bbox = Column(JSON, nullable=True)
    edit_source = Column(String, default="manual", nullable=False)

    edited_at = Column(DateTime(timezone=True), index=True, nullable=False)

    def to_dict(self) -> dict:
        edited_at = self.edited_at
        if edited_at is not None and edited_at.tzinfo is None:
            edited_at = edited_at.replace(tzinfo=timezone.utc)
        return {
            "id": self.id,
            "seq": self.seq,
            "roadAssetId": self.road_asset_id,
            "editType": self.edit_type,
            "roadName": self.road_name,
            "roadDisplayName": self.road_display_name,
            "roadWard": self.road_ward,
            "roadType": self.road_type,
            "bbox": self.bbox,
            "editSource": self.edit_source,
            "editedAt": edited_at.isoformat() if edited_at else None,
        }
