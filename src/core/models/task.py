import uuid
from datetime import datetime

from sqlalchemy import Boolean, Enum, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models.base import Base, TimestampMixin, UTCDateTime
from src.core.models.enums import (
    TaskCategory,
    TaskPriority,
    TaskSource,
    TaskStatus,
    enum_values,
)


class Task(Base, TimestampMixin):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[TaskCategory] = mapped_column(
        Enum(TaskCategory, name="task_category", native_enum=False, values_callable=enum_values),
        default=TaskCategory.general,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority, name="task_priority", native_enum=False, values_callable=enum_values),
        default=TaskPriority.medium,
    )
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status", native_enum=False, values_callable=enum_values),
        default=TaskStatus.pending,
    )
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    source: Mapped[TaskSource] = mapped_column(
        Enum(TaskSource, name="task_source", native_enum=False, values_callable=enum_values),
        default=TaskSource.manual,
    )
    source_app: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    # Dependency flags
    location_dependent: Mapped[bool] = mapped_column(Boolean, default=False)
    weather_dependent: Mapped[bool] = mapped_column(Boolean, default=False)
    time_dependent: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("ix_tasks_source_app_created", "source_app", "created_at"),
        Index("ix_tasks_status_deleted", "status", "is_deleted"),
    )
