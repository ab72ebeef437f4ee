from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from roadworks.core.config import settings
from roadworks.core.db import Base, engine, SessionLocal
from roadworks.core.errors import LifecycleError
from roadworks.core.logging_config import configure_logging
from roadworks.routers.assets import router as assets_router
from roadworks.routers.auth import router as auth_router
from roadworks.routers.events import router as events_router
from roadworks.routers.evidence import router as evidence_router
from roadworks.routers.recent_edits import router as recent_edits_router, workflow_router
from roadworks.routers.work_orders import router as work_orders_router
from roadworks.services.notification_bus import NotificationBus
from roadworks.services.seed import seed_users

# Import models so SQLAlchemy registers them before create_all()
import roadworks.models.user  # noqa: F401
import roadworks.models.road_asset  # noqa: F401
import roadworks.models.construction_event  # noqa: F401
import roadworks.models.work_order  # noqa: F401
import roadworks.models.evidence  # noqa: F401
import roadworks.models.work_order_partner  # noqa: F401
import roadworks.models.recent_edit  # noqa: F401
import roadworks.models.workflow_event  # noqa: F401

configure_logging()

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

app.state.notification_bus = NotificationBus(
    max_pending=settings.SUBSCRIBER_MAX_PENDING,
    idle_timeout=settings.SUBSCRIBER_IDLE_TIMEOUT_SECONDS,
    max_list_limit=settings.RECENT_EDITS_MAX_LIMIT,
)

Base.metadata.create_all(bind=engine)

with SessionLocal() as db:  # type: Session
    seed_users(db)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


app.include_router(auth_router)
app.include_router(events_router)
app.include_router(work_orders_router)
app.include_router(evidence_router)
app.include_router(recent_edits_router)
app.include_router(workflow_router)
app.include_router(assets_router)


@app.get("/")
def root():
    return {"name": settings.APP_NAME, "docs": "/docs", "health": "/health"}


@app.get("/health")
def health():
    bus: NotificationBus = app.state.notification_bus
    return {"ok": True, **bus.stats()}
