from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from roadworks.core.auth import require_roles
from roadworks.core.db import get_db
from roadworks.core.deps import get_bus
from roadworks.models.user import User, UserRole
from roadworks.schemas.asset import AssetCreate, AssetUpdate
from roadworks.services import assets
from roadworks.services.notification_bus import NotificationBus
from roadworks.services.read_model import asset_summary

router = APIRouter(prefix="/assets", tags=["assets"])

_editors = require_roles(UserRole.OPERATOR, UserRole.ADMIN)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_asset(
    payload: AssetCreate,
    db: Session = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
    _user: User = Depends(_editors),
):
    data = payload.model_dump()
    asset, edit = assets.create_asset(db, bus, asset_id=data.pop("id"), **data)
    return {"asset": asset_summary(asset), "edit": edit.to_dict()}


@router.patch("/{asset_id}")
def update_asset(
    asset_id: str,
    payload: AssetUpdate,
    db: Session = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
    _user: User = Depends(_editors),
):
    changes = payload.model_dump(exclude_unset=True)
    edit_source = changes.pop("edit_source", "manual")
    asset, edit = assets.update_asset(db, bus, asset_id, changes, edit_source=edit_source)
    return {"asset": asset_summary(asset), "edit": edit.to_dict() if edit else None}


@router.delete("/{asset_id}")
def delete_asset(
    asset_id: str,
    db: Session = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
    _user: User = Depends(_editors),
):
    edit = assets.delete_asset(db, bus, asset_id)
    return {"deleted": asset_id, "edit": edit.to_dict()}
