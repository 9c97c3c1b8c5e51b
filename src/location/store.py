"""Task location rows: resolved places plus the two marker kinds.

A task holds either resolved places, one PENDING_LOCATION_SYNC marker (the
generated search query waiting for a position report) or one NO_RESULTS
marker. Marker inserts are guarded by ``NOT EXISTS`` and marker claims are a
conditional ``DELETE`` so concurrent cycles cannot both act on one marker.
"""

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import (
    Float,
    Integer,
    String,
    Uuid,
    case,
    delete,
    exists,
    insert,
    literal,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.models.enums import TaskStatus
from src.core.models.task import Task
from src.core.models.task_location import (
    MARKER_PLACE_IDS,
    NO_RESULTS,
    PENDING_LOCATION_SYNC,
    SEARCH_QUERY_GENERATED,
    TaskLocation,
)
from src.core.schemas.places import PlaceResult
from src.tasks.store import OPEN_STATUSES

logger = logging.getLogger(__name__)


class LocationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from src.core.db import async_session

            session_factory = async_session
        self._session_factory = session_factory

    async def tasks_without_locations(self, limit: int = 5) -> list[Task]:
        """Non-deleted, non-completed tasks with no location row of any kind."""
        has_row = exists().where(TaskLocation.task_id == Task.id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Task)
                .where(
                    Task.is_deleted.is_(False),
                    Task.status != TaskStatus.completed,
                    ~has_row,
                )
                .order_by(Task.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def add_query_marker(self, task_id: uuid.UUID, search_query: str) -> bool:
        return await self._insert_marker(
            task_id, name=SEARCH_QUERY_GENERATED, address=search_query, place_id=PENDING_LOCATION_SYNC
        )

    async def add_no_results_marker(self, task_id: uuid.UUID, search_query: str = "") -> bool:
        return await self._insert_marker(
            task_id, name=NO_RESULTS, address=search_query, place_id=NO_RESULTS
        )

    async def _insert_marker(
        self, task_id: uuid.UUID, *, name: str, address: str, place_id: str
    ) -> bool:
        """Insert a marker only if the task has no location rows. True if inserted."""
        row = select(
            literal(task_id, Uuid()),
            literal(name, String()),
            literal(address, String()),
            literal(0.0, Float()),
            literal(0.0, Float()),
            literal(place_id, String()),
            literal(0, Integer()),
        ).where(~exists().where(TaskLocation.task_id == task_id))

        stmt = insert(TaskLocation.__table__).from_select(
            ["task_id", "name", "address", "latitude", "longitude", "place_id", "distance_meters"],
            row,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def pending_markers(self) -> list[TaskLocation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TaskLocation)
                .where(TaskLocation.place_id == PENDING_LOCATION_SYNC)
                .order_by(TaskLocation.id)
            )
            return list(result.scalars().all())

    async def claim_marker(self, marker_id: int) -> bool:
        """Delete the marker; only the caller whose delete hit a row proceeds."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(TaskLocation).where(
                    TaskLocation.id == marker_id,
                    TaskLocation.place_id == PENDING_LOCATION_SYNC,
                )
            )
            await session.commit()
            return result.rowcount == 1

    async def has_resolved_locations(self, task_id: uuid.UUID) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TaskLocation.id)
                .where(
                    TaskLocation.task_id == task_id,
                    TaskLocation.place_id.not_in(MARKER_PLACE_IDS),
                )
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def replace_locations(
        self, task_id: uuid.UUID, places: Sequence[PlaceResult], distances: Sequence[int]
    ) -> int:
        """Swap every row of the task for ``places`` in one transaction."""
        rows = [
            TaskLocation(
                task_id=task_id,
                name=place.name,
                address=place.address,
                latitude=place.lat,
                longitude=place.lng,
                place_id=place.place_id,
                rating=place.rating,
                is_open=place.open_now,
                distance_meters=distance,
            )
            for place, distance in zip(places, distances, strict=True)
        ]
        async with self._session_factory() as session:
            await session.execute(delete(TaskLocation).where(TaskLocation.task_id == task_id))
            session.add_all(rows)
            await session.commit()
        return len(rows)

    async def for_task(self, task_id: uuid.UUID) -> list[TaskLocation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TaskLocation)
                .where(TaskLocation.task_id == task_id)
                .order_by(TaskLocation.distance_meters.asc(), TaskLocation.id)
            )
            return list(result.scalars().all())

    async def active_locations(self) -> list[tuple[TaskLocation, Task]]:
        """Resolved places of open, non-deleted tasks with usable coordinates."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(TaskLocation, Task)
                .join(Task, Task.id == TaskLocation.task_id)
                .where(
                    Task.is_deleted.is_(False),
                    Task.status.in_(OPEN_STATUSES),
                    TaskLocation.place_id.not_in(MARKER_PLACE_IDS),
                    ~((TaskLocation.latitude == 0) & (TaskLocation.longitude == 0)),
                )
            )
            return [(loc, task) for loc, task in result.all()]

    async def update_distances(self, distances: dict[int, int]) -> int:
        """One UPDATE keyed by location id -> metres. Returns rows matched."""
        if not distances:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(
                update(TaskLocation)
                .where(TaskLocation.id.in_(list(distances)))
                .values(distance_meters=case(distances, value=TaskLocation.id))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount or 0
