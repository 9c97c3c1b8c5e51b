"""Notification store: inbound notifications awaiting a task decision."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import ValidationFailure
from src.core.models.base import utcnow
from src.core.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from src.core.db import async_session

            session_factory = async_session
        self._session_factory = session_factory

    async def add(
        self,
        *,
        source_app: str,
        title: str = "",
        content: str = "",
        timestamp: datetime | None = None,
    ) -> Notification:
        """Ingestion boundary: persist a raw notification as unprocessed."""
        if not source_app or not source_app.strip():
            raise ValidationFailure("source_app is required")
        if not (title or "").strip() and not (content or "").strip():
            raise ValidationFailure("title or content is required")

        notification = Notification(
            id=uuid.uuid4(),
            source_app=source_app.strip(),
            title=title or "",
            content=content or "",
            timestamp=timestamp or utcnow(),
            processed=False,
        )
        async with self._session_factory() as session:
            session.add(notification)
            await session.commit()
        logger.debug("Notification stored id=%s app=%s", notification.id, notification.source_app)
        return notification

    async def get(self, notification_id: uuid.UUID) -> Notification | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Notification).where(Notification.id == notification_id)
            )
            return result.scalar_one_or_none()

    async def unprocessed(self, limit: int = 10) -> list[Notification]:
        """Newest unprocessed notifications first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Notification)
                .where(Notification.processed.is_(False))
                .order_by(Notification.timestamp.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def recent_from_source(
        self,
        source_app: str,
        *,
        exclude_id: uuid.UUID | None = None,
        hours: int = 24,
        limit: int = 5,
        now: datetime | None = None,
    ) -> list[Notification]:
        """Other notifications from the same app, processed or not, newest first."""
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        query = select(Notification).where(
            Notification.source_app == source_app,
            Notification.timestamp >= cutoff,
        )
        if exclude_id is not None:
            query = query.where(Notification.id != exclude_id)

        async with self._session_factory() as session:
            result = await session.execute(
                query.order_by(Notification.timestamp.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def mark_processed(
        self,
        notification_id: uuid.UUID,
        *,
        related_task_id: uuid.UUID | None = None,
        skip_reason: str | None = None,
    ) -> bool:
        """Flag as processed. Returns False if another worker got there first."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(Notification.id == notification_id, Notification.processed.is_(False))
                .values(
                    processed=True,
                    processed_at=utcnow(),
                    related_task_id=related_task_id,
                    skip_reason=skip_reason,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def purge_processed(self, *, older_than: timedelta, now: datetime | None = None) -> int:
        """Delete processed notifications whose processed_at is older than the cutoff."""
        cutoff = (now or utcnow()) - older_than
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Notification).where(
                    Notification.processed.is_(True),
                    Notification.processed_at < cutoff,
                )
            )
            await session.commit()
            deleted = result.rowcount or 0
        if deleted:
            logger.info("Purged %d processed notifications older than %s", deleted, older_than)
        return deleted
