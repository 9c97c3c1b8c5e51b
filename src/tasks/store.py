"""Task store: soft-deletable task records shared by the pipeline and the API.

Every conditional write (status transition, soft delete, partial edit) is a
single ``UPDATE ... WHERE`` statement so concurrent background cycles and
request handlers never race on read-modify-write.
"""

import logging
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import TaskNotFound, ValidationFailure
from src.core.models.base import utcnow
from src.core.models.enums import TaskCategory, TaskPriority, TaskSource, TaskStatus
from src.core.models.task import Task

logger = logging.getLogger(__name__)

OPEN_STATUSES = (TaskStatus.pending, TaskStatus.in_progress)

EDITABLE_FIELDS = {
    "title",
    "description",
    "category",
    "priority",
    "status",
    "due_date",
    "location_dependent",
    "weather_dependent",
    "time_dependent",
}

DATE_RANGES = ("today", "tomorrow", "this_week", "next_week", "this_month", "overdue")

_NON_WORD = re.compile(r"[^\w]+")

_PRIORITY_RANK = case(
    (Task.priority == TaskPriority.high, 1),
    (Task.priority == TaskPriority.medium, 2),
    else_=3,
)


def _bulk_conditions(
    task_ids: list[uuid.UUID] | None,
    status: TaskStatus | None,
    category: TaskCategory | None,
    completed_before: datetime | None,
) -> list:
    """WHERE clauses for a bulk delete. Explicit ids take precedence over filters."""
    conditions = [Task.is_deleted.is_(False)]
    if task_ids:
        conditions.append(Task.id.in_(task_ids))
        return conditions
    if not (status or category or completed_before):
        raise ValidationFailure("Bulk delete needs task_ids or at least one filter")
    if status:
        conditions.append(Task.status == status)
    if category:
        conditions.append(Task.category == category)
    if completed_before:
        conditions.append(Task.completed_at < completed_before)
    return conditions


def normalize_title(title: str) -> str:
    """Casefold and collapse punctuation/whitespace for duplicate checks."""
    return _NON_WORD.sub(" ", title.casefold()).strip()


def date_range_bounds(date_range: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return [start, end) in UTC for a named due-date range.

    Weeks start on Monday.
    """
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=today.weekday())

    if date_range == "today":
        return today, today + timedelta(days=1)
    if date_range == "tomorrow":
        start = today + timedelta(days=1)
        return start, start + timedelta(days=1)
    if date_range == "this_week":
        return week_start, week_start + timedelta(days=7)
    if date_range == "next_week":
        start = week_start + timedelta(days=7)
        return start, start + timedelta(days=7)
    if date_range == "this_month":
        start = today.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start, end
    if date_range == "overdue":
        return datetime(1970, 1, 1, tzinfo=UTC), now
    raise ValidationFailure(f"Invalid date_range: {date_range}")


class TaskStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from src.core.db import async_session

            session_factory = async_session
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        *,
        title: str,
        description: str = "",
        category: TaskCategory = TaskCategory.general,
        priority: TaskPriority = TaskPriority.medium,
        source: TaskSource = TaskSource.manual,
        source_app: str | None = None,
        due_date: datetime | None = None,
        location_dependent: bool = False,
        weather_dependent: bool = False,
        time_dependent: bool = False,
    ) -> Task:
        title = (title or "").strip()
        if not title:
            raise ValidationFailure("title is required")

        now = utcnow()
        task = Task(
            id=uuid.uuid4(),
            title=title,
            description=description or "",
            category=category,
            priority=priority,
            status=TaskStatus.pending,
            due_date=due_date,
            source=source,
            source_app=source_app,
            is_deleted=False,
            location_dependent=location_dependent,
            weather_dependent=weather_dependent,
            time_dependent=time_dependent,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(task)
            await session.commit()
        logger.info("Task created id=%s source=%s title=%r", task.id, source.value, title)
        return task

    async def update_fields(self, task_id: uuid.UUID, fields: dict[str, Any]) -> Task:
        """Partial update: only supplied keys are written, updated_at always refreshed."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailure(f"Fields not editable: {', '.join(sorted(unknown))}")

        now = utcnow()
        values: dict[str, Any] = dict(fields)
        values["updated_at"] = now

        if "title" in values:
            title = (values["title"] or "").strip()
            if not title:
                raise ValidationFailure("title must not be blank")
            values["title"] = title

        if "status" in values:
            status = TaskStatus(values["status"])
            values["status"] = status
            if status == TaskStatus.completed:
                values["completed_at"] = func.coalesce(Task.completed_at, now)
            else:
                values["completed_at"] = None

        async with self._session_factory() as session:
            result = await session.execute(
                update(Task)
                .where(Task.id == task_id, Task.is_deleted.is_(False))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount == 0:
                raise TaskNotFound(task_id)
        logger.info("Task %s updated: %s", task_id, ", ".join(sorted(fields)) or "touch")
        return await self.get(task_id)

    async def complete(self, task_id: uuid.UUID) -> Task:
        """Mark completed; completing twice keeps the first completed_at."""
        now = utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                update(Task)
                .where(Task.id == task_id, Task.is_deleted.is_(False))
                .values(
                    status=TaskStatus.completed,
                    completed_at=func.coalesce(Task.completed_at, now),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount == 0:
                raise TaskNotFound(task_id)
        logger.info("Task %s completed", task_id)
        return await self.get(task_id)

    async def soft_delete(self, task_id: uuid.UUID) -> bool:
        """Set is_deleted. Returns False when the task was already deleted."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(Task)
                .where(Task.id == task_id, Task.is_deleted.is_(False))
                .values(is_deleted=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount == 1:
                logger.info("Task %s soft-deleted", task_id)
                return True

            exists = await session.execute(select(Task.id).where(Task.id == task_id))
            if exists.scalar_one_or_none() is None:
                raise TaskNotFound(task_id)
        return False

    async def mark_location_dependent(self, task_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Task)
                .where(Task.id == task_id, Task.location_dependent.is_(False))
                .values(location_dependent=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    # ------------------------------------------------------------------
    # Reads (all exclude soft-deleted rows)
    # ------------------------------------------------------------------

    async def get(self, task_id: uuid.UUID) -> Task:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task).where(Task.id == task_id, Task.is_deleted.is_(False))
            )
            task = result.scalar_one_or_none()
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        category: TaskCategory | None = None,
        priority: TaskPriority | None = None,
        limit: int = 100,
    ) -> list[Task]:
        query = select(Task).where(Task.is_deleted.is_(False))
        if status:
            query = query.where(Task.status == status)
        if category:
            query = query.where(Task.category == category)
        if priority:
            query = query.where(Task.priority == priority)
        query = query.order_by(Task.created_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_pending(self, limit: int = 100) -> list[Task]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task)
                .where(Task.is_deleted.is_(False), Task.status.in_(OPEN_STATUSES))
                .order_by(Task.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def recent_from_source(
        self, source_app: str, *, days: int = 7, limit: int = 20, now: datetime | None = None
    ) -> list[Task]:
        """Non-deleted tasks created from ``source_app`` in the last ``days``."""
        cutoff = (now or utcnow()) - timedelta(days=days)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task)
                .where(
                    Task.source_app == source_app,
                    Task.created_at >= cutoff,
                    Task.is_deleted.is_(False),
                )
                .order_by(Task.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def recent_pending(
        self, *, days: int = 7, limit: int = 50, now: datetime | None = None
    ) -> list[Task]:
        """Open tasks from the last ``days`` regardless of source."""
        cutoff = (now or utcnow()) - timedelta(days=days)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task)
                .where(
                    Task.created_at >= cutoff,
                    Task.status.in_(OPEN_STATUSES),
                    Task.is_deleted.is_(False),
                )
                .order_by(Task.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_duplicate_title(
        self,
        title: str,
        *,
        source_app: str | None,
        window: timedelta,
        now: datetime | None = None,
    ) -> Task | None:
        """Recent non-deleted task with the same normalized title from the same app."""
        wanted = normalize_title(title)
        if not wanted:
            return None
        cutoff = (now or utcnow()) - window
        query = select(Task).where(Task.created_at >= cutoff, Task.is_deleted.is_(False))
        if source_app is None:
            query = query.where(Task.source_app.is_(None))
        else:
            query = query.where(Task.source_app == source_app)

        async with self._session_factory() as session:
            result = await session.execute(query.order_by(Task.created_at.desc()).limit(50))
            for task in result.scalars():
                if normalize_title(task.title) == wanted:
                    return task
        return None

    async def important(self, count: int = 3, *, include_completed: bool = False) -> list[Task]:
        """Top tasks by priority, then earliest due date, then newest."""
        query = select(Task).where(Task.is_deleted.is_(False))
        if not include_completed:
            query = query.where(Task.status.in_(OPEN_STATUSES))
        query = query.order_by(
            _PRIORITY_RANK, Task.due_date.asc().nulls_last(), Task.created_at.desc()
        ).limit(count)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def bulk_delete_candidates(
        self,
        *,
        task_ids: list[uuid.UUID] | None = None,
        status: TaskStatus | None = None,
        category: TaskCategory | None = None,
        completed_before: datetime | None = None,
    ) -> list[Task]:
        """Tasks a bulk delete with the same arguments would remove."""
        conditions = _bulk_conditions(task_ids, status, category, completed_before)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task).where(*conditions).order_by(Task.created_at.desc())
            )
            return list(result.scalars().all())

    async def bulk_soft_delete(
        self,
        *,
        task_ids: list[uuid.UUID] | None = None,
        status: TaskStatus | None = None,
        category: TaskCategory | None = None,
        completed_before: datetime | None = None,
    ) -> int:
        conditions = _bulk_conditions(task_ids, status, category, completed_before)
        async with self._session_factory() as session:
            result = await session.execute(
                update(Task)
                .where(*conditions)
                .values(is_deleted=True, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            deleted = result.rowcount or 0
        logger.info("Bulk soft delete removed %d tasks", deleted)
        return deleted

    async def search(self, query: str, limit: int = 50) -> list[Task]:
        text = query.strip()
        if not text:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task)
                .where(
                    Task.is_deleted.is_(False),
                    Task.title.icontains(text, autoescape=True)
                    | Task.description.icontains(text, autoescape=True),
                )
                .order_by(Task.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def due_in_range(
        self,
        date_range: str,
        *,
        status: TaskStatus | None = TaskStatus.pending,
        now: datetime | None = None,
    ) -> list[Task]:
        start, end = date_range_bounds(date_range, now)
        query = select(Task).where(
            Task.is_deleted.is_(False),
            Task.due_date.is_not(None),
            Task.due_date >= start,
            Task.due_date < end,
        )
        if status:
            query = query.where(Task.status == status)

        async with self._session_factory() as session:
            result = await session.execute(query.order_by(Task.due_date.asc()))
            return list(result.scalars().all())

    async def summary(self) -> dict[str, Any]:
        """Counts of active tasks by status, category and priority."""
        async with self._session_factory() as session:
            by_status = await session.execute(
                select(Task.status, func.count(Task.id))
                .where(Task.is_deleted.is_(False))
                .group_by(Task.status)
            )
            by_category = await session.execute(
                select(Task.category, func.count(Task.id))
                .where(Task.is_deleted.is_(False))
                .group_by(Task.category)
            )
            by_priority = await session.execute(
                select(Task.priority, func.count(Task.id))
                .where(Task.is_deleted.is_(False))
                .group_by(Task.priority)
            )
            high_pending = await session.execute(
                select(
                    func.count(
                        case(
                            (
                                (Task.priority == TaskPriority.high)
                                & (Task.status == TaskStatus.pending),
                                1,
                            )
                        )
                    )
                ).where(Task.is_deleted.is_(False))
            )

            status_counts = {s.value: n for s, n in by_status.all()}
            return {
                "total": sum(status_counts.values()),
                "by_status": {
                    s.value: status_counts.get(s.value, 0) for s in TaskStatus
                },
                "by_category": {c.value: n for c, n in by_category.all()},
                "by_priority": {p.value: n for p, n in by_priority.all()},
                "pending_high_priority": high_pending.scalar() or 0,
            }
