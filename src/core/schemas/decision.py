"""Decision schema shared with the decision collaborator.

The host never trusts collaborator output beyond this schema. Bump
``DECISION_SCHEMA_VERSION`` on any incompatible change.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.core.models.enums import TaskCategory, TaskPriority, TaskStatus

DECISION_SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Input: notification + context
# ---------------------------------------------------------------------------


class ContextNotification(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    source_app: str
    title: str
    content: str
    timestamp: datetime


class ContextTask(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str | None = None
    category: TaskCategory
    priority: TaskPriority
    status: TaskStatus
    source_app: str | None = None
    created_at: datetime


class DecisionInput(BaseModel):
    """Everything the collaborator may look at for one notification."""

    schema_version: Literal[1] = DECISION_SCHEMA_VERSION
    notification: ContextNotification
    recent_context: list[ContextNotification] = Field(default_factory=list)
    existing_tasks_from_source: list[ContextTask] = Field(default_factory=list)
    recent_pending_tasks: list[ContextTask] = Field(default_factory=list)

    def known_task_ids(self) -> set[uuid.UUID]:
        return {t.id for t in self.existing_tasks_from_source} | {
            t.id for t in self.recent_pending_tasks
        }


# ---------------------------------------------------------------------------
# Output: exactly one action per notification
# ---------------------------------------------------------------------------


class CreateAction(BaseModel):
    action: Literal["create"] = "create"
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    category: TaskCategory = TaskCategory.general
    priority: TaskPriority = TaskPriority.medium
    source_app: str | None = None
    due_date: datetime | None = None


class EditAction(BaseModel):
    action: Literal["edit"] = "edit"
    target_task_id: uuid.UUID
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    category: TaskCategory | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None

    def changed_fields(self) -> dict[str, Any]:
        """Only the fields the collaborator actually supplied."""
        return self.model_dump(exclude_none=True, exclude={"action", "target_task_id"})


class DeleteAction(BaseModel):
    action: Literal["delete"] = "delete"
    target_task_id: uuid.UUID


class CompleteAction(BaseModel):
    action: Literal["complete"] = "complete"
    target_task_id: uuid.UUID


class IgnoreAction(BaseModel):
    action: Literal["ignore"] = "ignore"
    reason: str = "not actionable"


TaskAction = Annotated[
    CreateAction | EditAction | DeleteAction | CompleteAction | IgnoreAction,
    Field(discriminator="action"),
]

TARGETED_ACTIONS = (EditAction, DeleteAction, CompleteAction)


class DecisionResult(BaseModel):
    schema_version: Literal[1] = DECISION_SCHEMA_VERSION
    actions: list[TaskAction] = Field(default_factory=list)
