"""Exception hierarchy for Memento.

Every error carries a machine-readable ``kind`` so HTTP handlers and
background cycles can report it without string matching.
"""


class MementoError(Exception):
    """Base exception for all Memento errors."""

    kind = "internal_error"


class ConfigurationMissing(MementoError):
    """A required external dependency (API key, endpoint) is not configured."""

    kind = "configuration_missing"


class TransientIOError(MementoError):
    """Network, database or timeout failure. Retried on the next cycle."""

    kind = "transient_io"


class PlacesSearchError(TransientIOError):
    """Places API call failed or returned an error status."""
    pass


class DecisionTimeout(TransientIOError):
    """Decision collaborator did not answer in time."""
    pass


class ValidationFailure(MementoError):
    """Decision output or request payload is structurally invalid."""

    kind = "validation_failure"


class TaskNotFound(MementoError):
    """Task id does not exist or was soft-deleted."""

    kind = "not_found"

    def __init__(self, task_id: object):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id
