import uuid

from sqlalchemy import Boolean, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models.base import Base

# Marker rows share the table with resolved places.
PENDING_LOCATION_SYNC = "PENDING_LOCATION_SYNC"
NO_RESULTS = "NO_RESULTS"
SEARCH_QUERY_GENERATED = "SEARCH_QUERY_GENERATED"
MARKER_PLACE_IDS = (PENDING_LOCATION_SYNC, NO_RESULTS)


class TaskLocation(Base):
    __tablename__ = "task_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    address: Mapped[str] = mapped_column(String(500), default="")
    latitude: Mapped[float] = mapped_column(Float, default=0.0)
    longitude: Mapped[float] = mapped_column(Float, default=0.0)
    place_id: Mapped[str] = mapped_column(String(255), index=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_open: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    distance_meters: Mapped[int] = mapped_column(Integer, default=0)

    @property
    def is_marker(self) -> bool:
        return self.place_id in MARKER_PLACE_IDS
