"""Notification ledger: per (task, alert type) cooldown gate.

``try_mark_sent`` is the only write path and is one statement:

    INSERT ... ON CONFLICT (task_id, notification_type)
    DO UPDATE SET last_sent_time = :now, notification_count = count + 1
    WHERE last_sent_time <= :cutoff
    RETURNING notification_count

A returned row means the caller owns this send. Two concurrent reporters
racing on the same key get one row back between them.
"""

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.models.base import utcnow
from src.core.models.enums import AlertType
from src.core.models.notification_ledger import NotificationLedger

logger = logging.getLogger(__name__)

_ledger = NotificationLedger.__table__


def _dialect_insert(session: AsyncSession):
    if session.bind.dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class NotificationLedgerStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from src.core.db import async_session

            session_factory = async_session
        self._session_factory = session_factory

    async def try_mark_sent(
        self,
        task_id: uuid.UUID,
        notification_type: AlertType = AlertType.location,
        *,
        cooldown: timedelta,
        now: datetime | None = None,
    ) -> int | None:
        """Record a send if the key is absent or cooled down.

        Returns the new notification_count, or None when still cooling.
        """
        now = now or utcnow()
        cutoff = now - cooldown
        async with self._session_factory() as session:
            insert = _dialect_insert(session)
            stmt = insert(_ledger).values(
                task_id=task_id,
                notification_type=notification_type,
                last_sent_time=now,
                notification_count=1,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["task_id", "notification_type"],
                set_={
                    "last_sent_time": now,
                    "notification_count": _ledger.c.notification_count + 1,
                },
                where=_ledger.c.last_sent_time <= cutoff,
            ).returning(_ledger.c.notification_count)

            result = await session.execute(stmt)
            count = result.scalar_one_or_none()
            await session.commit()
        return count

    async def recently_sent_task_ids(
        self,
        task_ids: Iterable[uuid.UUID],
        notification_type: AlertType = AlertType.location,
        *,
        cooldown: timedelta,
        now: datetime | None = None,
    ) -> set[uuid.UUID]:
        """Subset of ``task_ids`` with a send newer than the cooldown cutoff."""
        ids = list(set(task_ids))
        if not ids:
            return set()
        cutoff = (now or utcnow()) - cooldown
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationLedger.task_id).where(
                    NotificationLedger.task_id.in_(ids),
                    NotificationLedger.notification_type == notification_type,
                    NotificationLedger.last_sent_time > cutoff,
                )
            )
            return set(result.scalars().all())

    async def get(
        self, task_id: uuid.UUID, notification_type: AlertType = AlertType.location
    ) -> NotificationLedger | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationLedger).where(
                    NotificationLedger.task_id == task_id,
                    NotificationLedger.notification_type == notification_type,
                )
            )
            return result.scalar_one_or_none()

    async def purge_older_than(self, max_age: timedelta, *, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - max_age
        async with self._session_factory() as session:
            result = await session.execute(
                delete(NotificationLedger).where(NotificationLedger.last_sent_time < cutoff)
            )
            await session.commit()
            deleted = result.rowcount or 0
        if deleted:
            logger.info("Ledger janitor removed %d rows older than %s", deleted, max_age)
        return deleted
