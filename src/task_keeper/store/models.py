"""Task domain model and input models."""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationInfo, field_validator


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskPriority(StrEnum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class Task:
    """A unit of work inside a project."""

    id: int
    title: str
    description: str
    project_id: str
    created_at: datetime
    updated_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority | None = TaskPriority.MEDIUM
    progress: int = 0
    dependencies: list[int] = field(default_factory=list)
    subtasks: list[int] = field(default_factory=list)
    is_subtask: bool = False
    assigned_to: str | None = None
    completed_at: datetime | None = None
    assigned_at: datetime | None = None

    def copy(self) -> "Task":
        """Detached copy (lists are not shared)."""
        return replace(self, dependencies=list(self.dependencies), subtasks=list(self.subtasks))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain mapping with ISO-8601 timestamps."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value if self.priority else None,
            "progress": self.progress,
            "dependencies": list(self.dependencies),
            "subtasks": list(self.subtasks),
            "is_subtask": self.is_subtask,
            "assigned_to": self.assigned_to,
            "project_id": self.project_id,
            "created_at": _timestamp_to_string(self.created_at),
            "updated_at": _timestamp_to_string(self.updated_at),
            "completed_at": _timestamp_to_string(self.completed_at),
            "assigned_at": _timestamp_to_string(self.assigned_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], project_id: str) -> "Task":
        """Build a task from a persisted mapping.

        Unknown keys are ignored; unknown status falls back to pending and unknown
        priority to unset.

        Raises:
            ValueError: If the record has no usable positive integer id
        """
        raw_id = data.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, int) or raw_id < 1:
            raise ValueError(f"Invalid task id: {raw_id!r}")

        created_at = _parse_timestamp(data.get("created_at")) or utcnow()
        return cls(
            id=raw_id,
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            project_id=str(data.get("project_id") or project_id),
            created_at=created_at,
            updated_at=_parse_timestamp(data.get("updated_at")) or created_at,
            status=_parse_status(data.get("status")),
            priority=_parse_priority(data.get("priority")),
            progress=_parse_progress(data.get("progress")),
            dependencies=_parse_id_list(data.get("dependencies")),
            subtasks=_parse_id_list(data.get("subtasks")),
            is_subtask=bool(data.get("is_subtask", False)),
            assigned_to=data.get("assigned_to") or None,
            completed_at=_parse_timestamp(data.get("completed_at")),
            assigned_at=_parse_timestamp(data.get("assigned_at")),
        )


class TaskCreate(BaseModel):
    """Fields accepted when creating a task."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    progress: int = Field(default=0, ge=0, le=100)
    dependencies: list[PositiveInt] = Field(default_factory=list)
    assigned_to: str | None = None


class TaskUpdate(BaseModel):
    """Patch of mutable task fields; unset fields are left untouched."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    dependencies: list[PositiveInt] | None = None
    subtasks: list[PositiveInt] | None = None
    is_subtask: bool | None = None
    assigned_to: str | None = None
    completed_at: datetime | None = None
    assigned_at: datetime | None = None

    @field_validator(
        "title", "description", "status", "progress", "dependencies", "subtasks", "is_subtask"
    )
    @classmethod
    def _reject_null(cls, value: Any, info: ValidationInfo) -> Any:
        """Refuse an explicit null for a field every task must have.

        Only assignment fields, timestamps and priority can be cleared.
        """
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class DeleteCriteria(BaseModel):
    """Selection for bulk deletion. The first criterion given wins, in field order."""

    ids: list[PositiveInt] | None = None
    status: TaskStatus | None = None
    duplicates: bool = False
    unqualified: bool = False


def _timestamp_to_string(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        return TaskStatus.PENDING


def _parse_priority(value: Any) -> TaskPriority | None:
    if not value:
        return None
    try:
        return TaskPriority(value)
    except ValueError:
        return None


def _parse_progress(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return max(0, min(100, int(value)))


def _parse_id_list(value: Any) -> list[int]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, int) and not isinstance(item, bool)]
