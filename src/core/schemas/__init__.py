from src.core.schemas.alerts import ProximityAlert
from src.core.schemas.decision import (
    CompleteAction,
    ContextNotification,
    ContextTask,
    CreateAction,
    DecisionInput,
    DecisionResult,
    DeleteAction,
    EditAction,
    IgnoreAction,
    TaskAction,
)
from src.core.schemas.places import PlaceResult

__all__ = [
    "CompleteAction",
    "ContextNotification",
    "ContextTask",
    "CreateAction",
    "DecisionInput",
    "DecisionResult",
    "DeleteAction",
    "EditAction",
    "IgnoreAction",
    "PlaceResult",
    "ProximityAlert",
    "TaskAction",
]
