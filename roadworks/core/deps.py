from fastapi import Depends, Request
from sqlalchemy.orm import Session

from roadworks.core.auth import get_current_user
from roadworks.core.db import get_db
from roadworks.models.user import User
from roadworks.services.capabilities import Actor
from roadworks.services.event_store import EventStore
from roadworks.services.lifecycle import LifecycleEngine
from roadworks.services.notification_bus import NotificationBus


def get_bus(request: Request) -> NotificationBus:
    return request.app.state.notification_bus


def get_engine(db: Session = Depends(get_db), bus: NotificationBus = Depends(get_bus)) -> LifecycleEngine:
    return LifecycleEngine(EventStore(db), bus)


def get_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)
