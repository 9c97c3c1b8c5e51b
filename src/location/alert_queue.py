"""Alert delivery queue: proximity alerts waiting for the client to poll.

Pull model: the client drains the queue; anything not drained within the TTL
is purged by the next position report.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Protocol

from redis.asyncio import Redis

from src.core.config import settings
from src.core.models.base import utcnow
from src.core.schemas.alerts import ProximityAlert

logger = logging.getLogger(__name__)

REDIS_QUEUE_KEY = "memento:proximity_alerts"


class AlertQueue(Protocol):
    async def enqueue(self, alert: ProximityAlert) -> None: ...

    async def drain(self) -> list[ProximityAlert]: ...

    async def purge_older_than(self, max_age: timedelta, *, now: datetime | None = None) -> int: ...

    async def size(self) -> int: ...


class InMemoryAlertQueue:
    """Process-local queue. Lost on restart."""

    def __init__(self):
        self._items: list[ProximityAlert] = []
        self._lock = asyncio.Lock()

    async def enqueue(self, alert: ProximityAlert) -> None:
        async with self._lock:
            self._items.append(alert)

    async def drain(self) -> list[ProximityAlert]:
        async with self._lock:
            items, self._items = self._items, []
        return items

    async def purge_older_than(self, max_age: timedelta, *, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - max_age
        async with self._lock:
            before = len(self._items)
            self._items = [a for a in self._items if a.timestamp >= cutoff]
            return before - len(self._items)

    async def size(self) -> int:
        async with self._lock:
            return len(self._items)


class RedisAlertQueue:
    """Sorted set scored by alert timestamp; shared across API workers."""

    def __init__(self, redis: Redis, key: str = REDIS_QUEUE_KEY):
        self._redis = redis
        self._key = key

    async def enqueue(self, alert: ProximityAlert) -> None:
        await self._redis.zadd(self._key, {alert.model_dump_json(): alert.timestamp.timestamp()})

    async def drain(self) -> list[ProximityAlert]:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrange(self._key, 0, -1)
            pipe.delete(self._key)
            members, _ = await pipe.execute()

        alerts = []
        for raw in members:
            try:
                alerts.append(ProximityAlert.model_validate_json(raw))
            except ValueError:
                logger.warning("Dropping unreadable alert payload: %.100s", raw)
        return alerts

    async def purge_older_than(self, max_age: timedelta, *, now: datetime | None = None) -> int:
        cutoff = ((now or utcnow()) - max_age).timestamp()
        return await self._redis.zremrangebyscore(self._key, "-inf", f"({cutoff}")

    async def size(self) -> int:
        return await self._redis.zcard(self._key)


def build_alert_queue(backend: str | None = None, redis: Redis | None = None) -> AlertQueue:
    backend = backend or settings.alert_queue_backend
    if backend == "redis":
        if redis is None:
            from src.core.db import redis as shared_redis

            redis = shared_redis
        logger.info("Alert queue: redis (%s)", REDIS_QUEUE_KEY)
        return RedisAlertQueue(redis)
    if backend != "memory":
        logger.warning("Unknown alert queue backend %r, using memory", backend)
    return InMemoryAlertQueue()
