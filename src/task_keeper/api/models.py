"""API models for TaskKeeper."""

from datetime import datetime

from pydantic import BaseModel, Field

from task_keeper.maintenance.engine import CleanupAction
from task_keeper.store.models import Task


class TaskResponse(BaseModel):
    """API response model for tasks."""

    id: int
    title: str
    description: str
    status: str
    priority: str | None
    progress: int
    dependencies: list[int]
    subtasks: list[int]
    is_subtask: bool
    assigned_to: str | None
    project_id: str
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    assigned_at: datetime | None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls.model_validate(task.to_dict())


class ProgressRequest(BaseModel):
    """Request model for progress updates."""

    progress: int


class AssignRequest(BaseModel):
    """Request model for assigning a task; the agent is the default assignee."""

    assignee: str | None = None


class CleanupRequest(BaseModel):
    """Request model for a maintenance pass with optional stage toggles."""

    operations: dict[str, bool] | None = None


class CleanupActionResponse(BaseModel):
    """API response model for one maintenance action."""

    type: str
    description: str
    task_id: int | None = None

    @classmethod
    def from_action(cls, action: CleanupAction) -> "CleanupActionResponse":
        return cls.model_validate(action.to_dict())


class CleanupResponse(BaseModel):
    """API response model for a maintenance pass."""

    project_id: str
    actions: list[CleanupActionResponse] = Field(default_factory=list)
    summary: str


class ReloadResponse(BaseModel):
    """API response model for an explicit reload."""

    project_id: str
    task_count: int
