"""Action executor: applies one validated action to the task store.

Ordering: the task mutation is committed before the notification is flagged
processed. A crash in between re-processes the notification (possible
duplicate create) instead of losing it.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from src.core.config import settings
from src.core.models.enums import TaskSource
from src.core.models.notification import Notification
from src.core.schemas.decision import (
    CompleteAction,
    CreateAction,
    DeleteAction,
    EditAction,
    IgnoreAction,
    TaskAction,
)
from src.pipeline.store import NotificationStore
from src.tasks.store import TaskStore

logger = logging.getLogger(__name__)

DUPLICATE_TITLE_REASON = "duplicate_title"


@dataclass
class ActionResult:
    action: str
    notification_id: uuid.UUID
    task_id: uuid.UUID | None = None
    skip_reason: str | None = None
    notification_marked: bool = True


class ActionExecutor:
    def __init__(
        self,
        tasks: TaskStore,
        notifications: NotificationStore,
        *,
        dedup_window: timedelta | None = None,
    ):
        self._tasks = tasks
        self._notifications = notifications
        if dedup_window is None:
            dedup_window = timedelta(minutes=settings.create_dedup_window_minutes)
        self._dedup_window = dedup_window

    async def apply(self, notification: Notification, action: TaskAction) -> ActionResult:
        """Apply ``action``; exceptions leave the notification unprocessed."""
        task_id: uuid.UUID | None = None
        skip_reason: str | None = None
        applied = action.action

        if isinstance(action, CreateAction):
            source_app = action.source_app or notification.source_app
            duplicate = None
            if self._dedup_window > timedelta(0):
                duplicate = await self._tasks.find_duplicate_title(
                    action.title, source_app=source_app, window=self._dedup_window
                )
            if duplicate is not None:
                logger.info(
                    "Create for notification %s matches task %s by title, ignoring",
                    notification.id,
                    duplicate.id,
                )
                applied = "ignore"
                task_id = duplicate.id
                skip_reason = DUPLICATE_TITLE_REASON
            else:
                task = await self._tasks.create(
                    title=action.title,
                    description=action.description,
                    category=action.category,
                    priority=action.priority,
                    source=TaskSource.notification,
                    source_app=source_app,
                    due_date=action.due_date,
                    time_dependent=action.due_date is not None,
                )
                task_id = task.id

        elif isinstance(action, EditAction):
            await self._tasks.update_fields(action.target_task_id, action.changed_fields())
            task_id = action.target_task_id

        elif isinstance(action, DeleteAction):
            deleted = await self._tasks.soft_delete(action.target_task_id)
            if not deleted:
                logger.info("Task %s was already deleted", action.target_task_id)
            task_id = action.target_task_id

        elif isinstance(action, CompleteAction):
            await self._tasks.complete(action.target_task_id)
            task_id = action.target_task_id

        elif isinstance(action, IgnoreAction):
            skip_reason = action.reason

        marked = await self._notifications.mark_processed(
            notification.id, related_task_id=task_id, skip_reason=skip_reason
        )
        if not marked:
            logger.warning("Notification %s was already processed elsewhere", notification.id)

        logger.info(
            "Notification %s -> %s%s",
            notification.id,
            applied,
            f" (task {task_id})" if task_id else f" ({skip_reason})",
        )
        return ActionResult(
            action=applied,
            notification_id=notification.id,
            task_id=task_id,
            skip_reason=skip_reason,
            notification_marked=marked,
        )
