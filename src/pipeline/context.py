"""Context assembler: builds the decision input for a batch of notifications.

For every notification the collaborator sees:
- recent notifications from the same app (edits / cancellations of a thread),
- recent tasks created from that app (duplicate detection),
- the shared pool of open tasks from the last week, regardless of source.

Read-only. Concurrent batches may see slightly stale context.
"""

import logging
from datetime import datetime

from src.core.config import settings
from src.core.models.base import utcnow
from src.core.models.notification import Notification
from src.core.schemas.decision import ContextNotification, ContextTask, DecisionInput
from src.pipeline.store import NotificationStore
from src.tasks.store import TaskStore

logger = logging.getLogger(__name__)


class ContextAssembler:
    def __init__(self, notifications: NotificationStore, tasks: TaskStore):
        self._notifications = notifications
        self._tasks = tasks

    async def assemble(
        self, batch: list[Notification], *, now: datetime | None = None
    ) -> list[DecisionInput]:
        if not batch:
            return []
        now = now or utcnow()

        tasks_by_source: dict[str, list[ContextTask]] = {}
        for source_app in dict.fromkeys(n.source_app for n in batch):
            tasks = await self._tasks.recent_from_source(
                source_app,
                days=settings.context_source_tasks_days,
                limit=settings.context_source_tasks_limit,
                now=now,
            )
            tasks_by_source[source_app] = [ContextTask.model_validate(t) for t in tasks]

        pending_pool = [
            ContextTask.model_validate(t)
            for t in await self._tasks.recent_pending(
                days=settings.context_pending_tasks_days,
                limit=settings.context_pending_tasks_limit,
                now=now,
            )
        ]

        inputs: list[DecisionInput] = []
        for notification in batch:
            recent = await self._notifications.recent_from_source(
                notification.source_app,
                exclude_id=notification.id,
                hours=settings.context_notifications_hours,
                limit=settings.context_notifications_limit,
                now=now,
            )
            inputs.append(
                DecisionInput(
                    notification=ContextNotification.model_validate(notification),
                    recent_context=[ContextNotification.model_validate(n) for n in recent],
                    existing_tasks_from_source=tasks_by_source.get(notification.source_app, []),
                    recent_pending_tasks=pending_pool,
                )
            )

        logger.debug(
            "Assembled context for %d notifications (%d sources, %d pending tasks)",
            len(inputs),
            len(tasks_by_source),
            len(pending_pool),
        )
        return inputs
