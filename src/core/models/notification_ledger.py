import uuid
from datetime import datetime

from sqlalchemy import Enum, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models.base import Base, UTCDateTime
from src.core.models.enums import AlertType, enum_values


class NotificationLedger(Base):
    """Cooldown record: one row per (task, alert type)."""

    __tablename__ = "notification_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # No FK: rows outlive their task until the janitor reaps them.
    task_id: Mapped[uuid.UUID] = mapped_column(Uuid())
    notification_type: Mapped[AlertType] = mapped_column(
        Enum(AlertType, name="alert_type", native_enum=False, values_callable=enum_values)
    )
    last_sent_time: Mapped[datetime] = mapped_column(UTCDateTime())
    notification_count: Mapped[int] = mapped_column(Integer, default=1)

    __table_args__ = (
        UniqueConstraint("task_id", "notification_type", name="uq_ledger_task_type"),
    )
