import enum


class TaskStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class TaskCategory(str, enum.Enum):
    general = "general"
    meetings = "meetings"
    finance = "finance"
    shopping = "shopping"
    communication = "communication"
    health = "health"


class TaskSource(str, enum.Enum):
    notification = "notification"
    chat = "chat"
    manual = "manual"


class AlertType(str, enum.Enum):
    location = "location"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (not member names) in non-native enum columns."""
    return [member.value for member in enum_cls]
