"""Proximity engine: live distances and cooldown-gated alerts.

The ledger write happens before the enqueue; an alert is never queued for a
send the ledger did not grant.
"""

import logging
import uuid
from datetime import datetime, timedelta

from src.core.config import settings
from src.core.models.base import utcnow
from src.core.models.enums import AlertType
from src.core.models.task import Task
from src.core.models.task_location import TaskLocation
from src.core.schemas.alerts import ProximityAlert
from src.location.alert_queue import AlertQueue
from src.location.geo import haversine_meters
from src.location.ledger import NotificationLedgerStore
from src.location.store import LocationStore

logger = logging.getLogger(__name__)


def format_alert_body(distance: int, location_name: str) -> str:
    return f"You're {distance} m from {location_name}"


class ProximityEngine:
    def __init__(
        self,
        queue: AlertQueue,
        *,
        locations: LocationStore | None = None,
        ledger: NotificationLedgerStore | None = None,
        radius_meters: int | None = None,
        cooldown: timedelta | None = None,
        queue_ttl: timedelta | None = None,
    ):
        self._queue = queue
        self._locations = locations or LocationStore()
        self._ledger = ledger or NotificationLedgerStore()
        self._radius = radius_meters or settings.proximity_radius_meters
        self._cooldown = cooldown or timedelta(minutes=settings.alert_cooldown_minutes)
        self._queue_ttl = queue_ttl or timedelta(minutes=settings.alert_queue_ttl_minutes)

    async def run(self, lat: float, lng: float, *, now: datetime | None = None) -> dict[str, int]:
        now = now or utcnow()
        rows = await self._locations.active_locations()

        distances: dict[int, int] = {}
        for loc, _task in rows:
            distances[loc.id] = round(haversine_meters(lat, lng, loc.latitude, loc.longitude))
        updated = await self._locations.update_distances(distances)

        # Nearest in-range location per task; a task alerts once per report.
        nearest: dict[uuid.UUID, tuple[TaskLocation, Task, int]] = {}
        for loc, task in rows:
            d = distances[loc.id]
            if not 0 < d < self._radius:
                continue
            current = nearest.get(task.id)
            if current is None or d < current[2]:
                nearest[task.id] = (loc, task, d)

        enqueued = 0
        if nearest:
            cooling = await self._ledger.recently_sent_task_ids(
                nearest.keys(), AlertType.location, cooldown=self._cooldown, now=now
            )
            for task_id, (loc, task, d) in nearest.items():
                if task_id in cooling:
                    continue
                count = await self._ledger.try_mark_sent(
                    task.id, AlertType.location, cooldown=self._cooldown, now=now
                )
                if count is None:
                    logger.debug("Alert for task %s lost the ledger race", task.id)
                    continue
                await self._queue.enqueue(
                    ProximityAlert(
                        task_id=str(task.id),
                        title=task.title,
                        body=format_alert_body(d, loc.name),
                        priority=task.priority.value,
                        distance=d,
                        location_name=loc.name,
                        timestamp=now,
                    )
                )
                enqueued += 1
                logger.info(
                    "Proximity alert #%d for task %s: %d m from %s", count, task.id, d, loc.name
                )

        purged = await self._queue.purge_older_than(self._queue_ttl, now=now)
        if purged:
            logger.info("Purged %d stale proximity alerts", purged)

        return {"updated": updated, "alerts_enqueued": enqueued, "purged": purged}
