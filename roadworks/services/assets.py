"""
Road asset store. Every create/update/delete runs inside the bus's
``edit_transaction``: the asset write and its RecentEdit commit together and
the edit is published once the commit succeeds.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from roadworks.core.errors import InvalidInput, NotFound
from roadworks.models.construction_event import event_road_assets
from roadworks.models.recent_edit import EditType, RecentEdit
from roadworks.models.road_asset import RoadAsset
from roadworks.services.notification_bus import NotificationBus

logger = logging.getLogger(__name__)


def _snapshot(asset: RoadAsset) -> dict[str, Any]:
    return {
        "name": asset.name,
        "display_name": asset.display_name,
        "ward": asset.ward,
        "road_type": asset.road_type,
    }


def _check_bbox(bbox) -> list[float] | None:
    if bbox is None:
        return None
    if len(bbox) != 4:
        raise InvalidInput("bbox must be [minLng, minLat, maxLng, maxLat]")
    min_lng, min_lat, max_lng, max_lat = (float(v) for v in bbox)
    if min_lng > max_lng or min_lat > max_lat:
        raise InvalidInput("bbox min values must not exceed max values")
    return [min_lng, min_lat, max_lng, max_lat]


def _get(db: Session, asset_id: str) -> RoadAsset:
    asset = db.query(RoadAsset).filter(RoadAsset.id == asset_id).first()
    if not asset:
        raise NotFound("Road asset", asset_id)
    return asset


def create_asset(
    db: Session,
    bus: NotificationBus,
    *,
    name: str | None = None,
    display_name: str | None = None,
    ward: str | None = None,
    road_type: str | None = None,
    status: str = "active",
    bbox: list[float] | None = None,
    asset_id: str | None = None,
    edit_source: str = "manual",
) -> tuple[RoadAsset, RecentEdit]:
    asset = RoadAsset(
        id=asset_id or f"RA-{uuid.uuid4().hex[:12]}",
        name=name,
        display_name=display_name,
        ward=ward,
        road_type=road_type,
        status=status,
        bbox=_check_bbox(bbox),
    )
    with bus.edit_transaction(db):
        db.add(asset)
        edit = bus.append_edit(db, asset.id, EditType.CREATE, asset.bbox, _snapshot(asset), edit_source)
    db.refresh(asset)
    logger.info("road asset created", extra={"edit_id": edit.id})
    return asset, edit


def update_asset(
    db: Session,
    bus: NotificationBus,
    asset_id: str,
    changes: dict[str, Any],
    edit_source: str = "manual",
) -> tuple[RoadAsset, RecentEdit | None]:
    """Apply ``changes``; returns no edit when nothing tracked actually changed."""
    unknown = set(changes) - set(RoadAsset.TRACKED_FIELDS)
    if unknown:
        raise InvalidInput(f"Unknown road asset fields: {', '.join(sorted(unknown))}")
    if "bbox" in changes:
        changes = dict(changes, bbox=_check_bbox(changes["bbox"]))

    asset = _get(db, asset_id)
    changed = {k: v for k, v in changes.items() if getattr(asset, k) != v}
    if not changed:
        return asset, None

    with bus.edit_transaction(db):
        for key, value in changed.items():
            setattr(asset, key, value)
        edit = bus.append_edit(db, asset.id, EditType.UPDATE, asset.bbox, _snapshot(asset), edit_source)
    db.refresh(asset)
    logger.info("road asset updated: %s", ", ".join(sorted(changed)), extra={"edit_id": edit.id})
    return asset, edit


def delete_asset(
    db: Session,
    bus: NotificationBus,
    asset_id: str,
    edit_source: str = "manual",
) -> RecentEdit:
    asset = _get(db, asset_id)
    with bus.edit_transaction(db):
        # The log row keeps the last known snapshot after the asset is gone
        edit = bus.append_edit(db, asset.id, EditType.DELETE, asset.bbox, _snapshot(asset), edit_source)
        db.execute(event_road_assets.delete().where(event_road_assets.c.road_asset_id == asset.id))
        db.delete(asset)
    logger.info("road asset deleted", extra={"edit_id": edit.id})
    return edit
