from src.core.models.base import Base
from src.core.models.enums import (
    AlertType,
    TaskCategory,
    TaskPriority,
    TaskSource,
    TaskStatus,
)
from src.core.models.notification import Notification
from src.core.models.notification_ledger import NotificationLedger
from src.core.models.task import Task
from src.core.models.task_location import TaskLocation

__all__ = [
    "AlertType",
    "Base",
    "Notification",
    "NotificationLedger",
    "Task",
    "TaskCategory",
    "TaskLocation",
    "TaskPriority",
    "TaskSource",
    "TaskStatus",
]
