from typing import Optional

from pydantic import Field

from roadworks.schemas.event import CamelModel


class AssetCreate(CamelModel):
    id: Optional[str] = None
    name: Optional[str] = None
    display_name: Optional[str] = None
    ward: Optional[str] = None
    road_type: Optional[str] = None
    status: str = "active"
    bbox: Optional[list[float]] = Field(default=None, min_length=4, max_length=4)
    edit_source: str = "manual"


class AssetUpdate(CamelModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    ward: Optional[str] = None
    road_type: Optional[str] = None
    status: Optional[str] = None
    bbox: Optional[list[float]] = Field(default=None, min_length=4, max_length=4)
    edit_source: str = "manual"
