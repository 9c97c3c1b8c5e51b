"""Manual task REST API: same store and invariants as the notification pipeline."""

import logging
import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.models.enums import TaskCategory, TaskPriority, TaskSource, TaskStatus
from src.location.store import LocationStore
from src.tasks.store import DATE_RANGES, TaskStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def coerce_category(value: Any) -> TaskCategory:
    """Unknown categories fall back to ``general`` instead of failing the request."""
    if isinstance(value, TaskCategory):
        return value
    try:
        return TaskCategory(str(value).strip().lower())
    except ValueError:
        logger.info("Unknown task category %r, using general", value)
        return TaskCategory.general


# --- Schemas ---


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str
    category: TaskCategory
    priority: TaskPriority
    status: TaskStatus
    due_date: datetime | None = None
    completed_at: datetime | None = None
    source: TaskSource
    source_app: str | None = None
    location_dependent: bool
    weather_dependent: bool
    time_dependent: bool
    created_at: datetime
    updated_at: datetime


class TaskListResponse(BaseModel):
    tasks: list[TaskOut]
    count: int


class TaskLocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    address: str
    latitude: float
    longitude: float
    place_id: str
    rating: float | None = None
    is_open: bool | None = None
    distance_meters: int


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    category: TaskCategory = TaskCategory.general
    priority: TaskPriority = TaskPriority.medium
    due_date: datetime | None = None
    location_dependent: bool = False
    weather_dependent: bool = False
    time_dependent: bool = False

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> TaskCategory:
        return coerce_category(value)


class TaskUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    category: TaskCategory | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    due_date: datetime | None = None
    location_dependent: bool | None = None
    weather_dependent: bool | None = None
    time_dependent: bool | None = None

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> TaskCategory | None:
        return None if value is None else coerce_category(value)

    def changed_fields(self) -> dict[str, Any]:
        """Fields the client sent; an explicit null only clears ``due_date``."""
        return {
            k: v
            for k, v in self.model_dump(exclude_unset=True).items()
            if v is not None or k == "due_date"
        }


class BulkDeleteRequest(BaseModel):
    task_ids: list[uuid.UUID] | None = None
    status: TaskStatus | None = None
    category: TaskCategory | None = None
    completed_before: datetime | None = None
    confirm: bool = False

    def selectors(self) -> dict[str, Any]:
        return self.model_dump(exclude={"confirm"})


def _list(tasks) -> TaskListResponse:
    return TaskListResponse(tasks=[TaskOut.model_validate(t) for t in tasks], count=len(tasks))


def get_task_store(request: Request) -> TaskStore:
    return request.app.state.tasks


def get_location_store(request: Request) -> LocationStore:
    return request.app.state.locations


# --- Endpoints ---


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    status: TaskStatus | None = None,
    category: TaskCategory | None = None,
    priority: TaskPriority | None = None,
    limit: int = Query(100, ge=1, le=500),
    store: TaskStore = Depends(get_task_store),
):
    tasks = await store.list_tasks(status=status, category=category, priority=priority, limit=limit)
    return _list(tasks)


@router.get("/search", response_model=TaskListResponse)
async def search_tasks(
    q: str = Query(..., min_length=1),
    store: TaskStore = Depends(get_task_store),
):
    """Case-insensitive match on title or description."""
    return _list(await store.search(q))


@router.get("/summary")
async def task_summary(store: TaskStore = Depends(get_task_store)):
    return await store.summary()


@router.get("/due", response_model=TaskListResponse)
async def tasks_due(
    range: str = Query("today", description=f"One of: {', '.join(DATE_RANGES)}"),
    status: TaskStatus | None = TaskStatus.pending,
    store: TaskStore = Depends(get_task_store),
):
    return _list(await store.due_in_range(range, status=status))


@router.post("", status_code=201, response_model=TaskOut)
async def create_task(body: TaskCreateRequest, store: TaskStore = Depends(get_task_store)):
    task = await store.create(
        title=body.title,
        description=body.description,
        category=body.category,
        priority=body.priority,
        source=TaskSource.manual,
        due_date=body.due_date,
        location_dependent=body.location_dependent,
        weather_dependent=body.weather_dependent,
        time_dependent=body.time_dependent or body.due_date is not None,
    )
    return TaskOut.model_validate(task)


@router.get("/important", response_model=TaskListResponse)
async def important_tasks(
    count: int = Query(3, ge=1, le=50),
    include_completed: bool = False,
    store: TaskStore = Depends(get_task_store),
):
    """Highest priority first, then earliest due date, then newest."""
    return _list(await store.important(count, include_completed=include_completed))


@router.post("/bulk-delete")
async def bulk_delete_tasks(body: BulkDeleteRequest, store: TaskStore = Depends(get_task_store)):
    """Soft delete by id list or filters. Without ``confirm`` only reports what would go."""
    if not body.confirm:
        candidates = await store.bulk_delete_candidates(**body.selectors())
        return {
            "confirmation_required": True,
            "count": len(candidates),
            "tasks": [TaskOut.model_validate(t).model_dump(mode="json") for t in candidates],
        }
    deleted = await store.bulk_soft_delete(**body.selectors())
    return {"deleted_count": deleted}


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(task_id: uuid.UUID, store: TaskStore = Depends(get_task_store)):
    return TaskOut.model_validate(await store.get(task_id))


@router.get("/{task_id}/locations", response_model=list[TaskLocationOut])
async def get_task_locations(
    task_id: uuid.UUID,
    store: TaskStore = Depends(get_task_store),
    locations: LocationStore = Depends(get_location_store),
):
    """Resolved places for a task, nearest first. Markers are not places."""
    await store.get(task_id)
    rows = await locations.for_task(task_id)
    return [TaskLocationOut.model_validate(r) for r in rows if not r.is_marker]


@router.put("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: uuid.UUID, body: TaskUpdateRequest, store: TaskStore = Depends(get_task_store)
):
    task = await store.update_fields(task_id, body.changed_fields())
    return TaskOut.model_validate(task)


@router.patch("/{task_id}/complete", response_model=TaskOut)
async def complete_task(task_id: uuid.UUID, store: TaskStore = Depends(get_task_store)):
    return TaskOut.model_validate(await store.complete(task_id))


@router.delete("/{task_id}", status_code=204)
async def delete_task(task_id: uuid.UUID, store: TaskStore = Depends(get_task_store)):
    """Soft delete. Deleting an already deleted task is a no-op."""
    await store.soft_delete(task_id)
    return Response(status_code=204)
