import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from src.core.models.base import utcnow


class ProximityAlert(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str
    title: str
    body: str
    priority: str = "medium"
    distance: int
    location_name: str
    timestamp: datetime = Field(default_factory=utcnow)
