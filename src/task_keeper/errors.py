"""Typed errors raised by the task store and maintenance engine."""

from datetime import UTC, datetime
from typing import Any


class TaskKeeperError(Exception):
    """Base class for all task-keeper errors."""

    code = "TASK_KEEPER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize error with message and optional structured details."""
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging and API responses."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class ValidationError(TaskKeeperError):
    """Malformed project id, task id, field or criteria."""

    code = "VALIDATION_ERROR"


class NotFoundError(TaskKeeperError):
    """Referenced task or project does not exist."""

    code = "NOT_FOUND"


class TaskNotFoundError(NotFoundError):
    """Task id not present in the project."""

    def __init__(self, task_id: int, project_id: str) -> None:
        super().__init__(
            f"Task with id {task_id} not found in project {project_id}",
            {"task_id": task_id, "project_id": project_id},
        )
        self.task_id = task_id
        self.project_id = project_id


class ProjectNotFoundError(NotFoundError):
    """Project has no persisted task file."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project {project_id} not found", {"project_id": project_id})
        self.project_id = project_id


class StateError(TaskKeeperError):
    """Illegal state transition, e.g. progress update on an unassigned task."""

    code = "STATE_ERROR"

    def __init__(self, message: str, task_id: int, current_state: str, action: str) -> None:
        super().__init__(
            message,
            {"task_id": task_id, "current_state": current_state, "action": action},
        )
        self.task_id = task_id
        self.current_state = current_state
        self.action = action


class FileSystemError(TaskKeeperError):
    """I/O failure while reading or writing a project's task file.

    The underlying exception is chained via ``raise ... from``.
    """

    code = "FILE_SYSTEM_ERROR"

    def __init__(self, message: str, operation: str, path: str | None = None) -> None:
        super().__init__(message, {"operation": operation, "path": path})
        self.operation = operation
        self.path = path


class ExternalServiceError(TaskKeeperError):
    """Similarity oracle transport or protocol failure."""

    code = "EXTERNAL_SERVICE_ERROR"
