import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="roadworks-tests-")
os.environ["JWT_SECRET"] = "test-secret-0123456789-abcdefghijklmnop"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_tmp, "uploads")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from roadworks.core.config import settings
from roadworks.core.db import Base, SessionLocal, engine
from roadworks.main import app
from roadworks.models.user import User
from roadworks.services.capabilities import Actor
from roadworks.services.event_store import EventStore
from roadworks.services.lifecycle import LifecycleEngine
from roadworks.services.notification_bus import NotificationBus
from roadworks.services.seed import seed_users

PASSWORDS = {
    "operator": "operator123",
    "reviewer": "reviewer123",
    "authority": "authority123",
    "admin": "admin123",
}


@pytest.fixture(autouse=True)
def fresh_database(tmp_path, monkeypatch):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as s:
        seed_users(s)
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    yield


@pytest.fixture
def bus():
    bus = NotificationBus(max_pending=50, idle_timeout=60.0, max_list_limit=200)
    app.state.notification_bus = bus
    return bus


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def lifecycle(db, bus):
    return LifecycleEngine(EventStore(db), bus)


@pytest.fixture
def actors(db):
    users = {u.username: u for u in db.query(User).all()}
    return {name: Actor.from_user(user) for name, user in users.items()}


@pytest.fixture
def client(bus):
    with TestClient(app) as c:
        yield c


def login(client, username: str) -> dict:
    resp = client.post("/auth/login", json={"username": username, "password": PASSWORDS[username]})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def event_dates(days: int = 3):
    start = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    return start, start + timedelta(days=days)


def make_event(lifecycle, actor, **overrides):
    start, end = event_dates()
    data = dict(name="Main St resurfacing", restriction_type="lane_restriction", start_date=start, end_date=end)
    data.update(overrides)
    return lifecycle.create_event(actor, **data)
