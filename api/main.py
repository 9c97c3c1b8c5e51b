"""Memento: FastAPI entrypoint (ingestion, position reports, alert drain, health)."""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.tasks import router as tasks_router
from src.core.config import settings
from src.core.db import async_session, redis
from src.core.exceptions import MementoError
from src.location.alert_queue import AlertQueue, build_alert_queue
from src.location.ledger import NotificationLedgerStore
from src.location.places import PlacesClient
from src.location.proximity import ProximityEngine
from src.location.query_generator import SearchQueryGenerator
from src.location.resolver import LocationResolver
from src.location.store import LocationStore
from src.location.sync import PositionReportHandler
from src.pipeline.collaborator import DecisionCollaborator, LLMDecisionCollaborator
from src.pipeline.processor import NotificationProcessor
from src.pipeline.store import NotificationStore
from src.tasks.store import TaskStore

logging.basicConfig(level=getattr(logging, settings.log_level))
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "not_found": 404,
    "validation_failure": 422,
    "configuration_missing": 503,
    "transient_io": 503,
}


def init_services(
    app: FastAPI,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    collaborator: DecisionCollaborator | None = None,
    query_generator: SearchQueryGenerator | None = None,
    places: PlacesClient | None = None,
    alert_queue: AlertQueue | None = None,
) -> None:
    """Build the stores and engines once and hang them on ``app.state``."""
    tasks = TaskStore(session_factory)
    notifications = NotificationStore(session_factory)
    locations = LocationStore(session_factory)
    queue = alert_queue or build_alert_queue()

    resolver = LocationResolver(
        locations=locations, tasks=tasks, query_generator=query_generator, places=places
    )
    engine = ProximityEngine(
        queue, locations=locations, ledger=NotificationLedgerStore(session_factory)
    )

    app.state.tasks = tasks
    app.state.notifications = notifications
    app.state.locations = locations
    app.state.alert_queue = queue
    app.state.position_handler = PositionReportHandler(resolver, engine)
    app.state.processor = NotificationProcessor(
        collaborator or LLMDecisionCollaborator(), notifications=notifications, tasks=tasks
    )
    app.state.services_ready = True


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Memento (%s)...", settings.app_env)
    if not getattr(app.state, "services_ready", False):
        init_services(app)
    yield
    await redis.aclose()
    logger.info("Shutting down Memento...")


app = FastAPI(title="Memento", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tasks_router)


@app.exception_handler(MementoError)
async def memento_error_handler(request: Request, exc: MementoError) -> JSONResponse:
    status = ERROR_STATUS.get(exc.kind, 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status, content={"error": {"kind": exc.kind, "message": str(exc)}}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid')}" if field else first.get("msg", "invalid")
    return JSONResponse(
        status_code=422, content={"error": {"kind": "validation_failure", "message": message}}
    )


# --- Schemas ---


class NotificationIn(BaseModel):
    source_app: str = Field(min_length=1, max_length=100)
    title: str = Field(default="", max_length=500)
    content: str = ""
    timestamp: datetime | None = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    source_app: str
    title: str
    content: str
    timestamp: datetime
    processed: bool


class PositionIn(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


# --- Endpoints ---


@app.get("/health")
async def health():
    checks = {"api": "ok"}
    try:
        await redis.ping()
        checks["redis"] = "ok"
    except Exception:
        checks["redis"] = "error"
    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"
    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
    return {"status": status, **checks}


@app.post("/api/notifications", status_code=201, response_model=NotificationOut)
async def ingest_notification(body: NotificationIn, request: Request):
    """Store a raw notification; the batch cycle picks it up."""
    store: NotificationStore = request.app.state.notifications
    notification = await store.add(
        source_app=body.source_app,
        title=body.title,
        content=body.content,
        timestamp=body.timestamp,
    )
    return NotificationOut.model_validate(notification)


@app.post("/api/notifications/process")
async def process_notifications(request: Request):
    """Run one decision batch now instead of waiting for the scheduler."""
    processor: NotificationProcessor = request.app.state.processor
    report = await processor.run_batch()
    return report.to_dict()


@app.post("/api/location")
async def report_location(body: PositionIn, request: Request):
    handler: PositionReportHandler = request.app.state.position_handler
    return await handler.handle(body.latitude, body.longitude)


@app.get("/api/proximity-notifications")
async def drain_proximity_notifications(request: Request):
    queue: AlertQueue = request.app.state.alert_queue
    alerts = await queue.drain()
    return {"notifications": [a.model_dump(mode="json") for a in alerts]}
