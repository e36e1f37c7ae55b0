"""Task API endpoints."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Query

from task_keeper.api.models import (
    AssignRequest,
    CleanupActionResponse,
    CleanupRequest,
    CleanupResponse,
    ProgressRequest,
    ReloadResponse,
    TaskResponse,
)
from task_keeper.errors import (
    FileSystemError,
    NotFoundError,
    StateError,
    TaskKeeperError,
    ValidationError,
)
from task_keeper.factory import get_maintenance_engine, get_task_store
from task_keeper.maintenance.engine import format_actions

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_CODES: list[tuple[type[TaskKeeperError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (StateError, 409),
    (FileSystemError, 500),
]


def _http_error(error: TaskKeeperError) -> HTTPException:
    """Map a task-keeper error to an HTTP error with its structured body."""
    status_code = next(
        (code for error_type, code in _STATUS_CODES if isinstance(error, error_type)), 500
    )
    if status_code >= 500:
        logger.error(f"[API] {error.code}: {error.message}", exc_info=error)
    else:
        logger.info(f"[API] {error.code}: {error.message}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


@router.get("/projects", response_model=list[str])
async def list_projects() -> list[str]:
    """List projects that have a persisted task file."""
    try:
        return await get_task_store().get_projects()
    except TaskKeeperError as e:
        raise _http_error(e) from e


@router.get("/projects/{project_id}/tasks", response_model=list[TaskResponse])
async def list_tasks(project_id: str, status: str | None = None) -> list[TaskResponse]:
    """List tasks of a project.

    Args:
        project_id: Project to read
        status: Only tasks with this status (pending, in-progress, completed)

    Returns:
        Tasks in stored order
    """
    store = get_task_store()
    try:
        if status:
            tasks = await store.get_tasks_by_status(status, project_id)
        else:
            tasks = await store.list_tasks(project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return [TaskResponse.from_task(task) for task in tasks]


@router.post("/projects/{project_id}/tasks", response_model=TaskResponse, status_code=201)
async def create_task(
    project_id: str,
    data: Annotated[dict[str, Any], Body()],
    parent_id: int | None = None,
) -> TaskResponse:
    """Create a task, optionally as a subtask of parent_id."""
    try:
        task = await get_task_store().create_task(data, project_id, parent_id=parent_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.post("/projects/{project_id}/tasks/delete", response_model=list[TaskResponse])
async def delete_tasks(
    project_id: str, criteria: Annotated[dict[str, Any], Body()]
) -> list[TaskResponse]:
    """Delete every task matching the criteria (ids, status, duplicates or unqualified).

    Returns:
        Deleted tasks with the ids they had before renumbering
    """
    try:
        deleted = await get_task_store().delete_tasks(criteria, project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return [TaskResponse.from_task(task) for task in deleted]


@router.get("/projects/{project_id}/tasks/{task_id}", response_model=TaskResponse)
async def get_task(project_id: str, task_id: int) -> TaskResponse:
    """Get a single task."""
    try:
        task = await get_task_store().get_task(task_id, project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.patch("/projects/{project_id}/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    project_id: str, task_id: int, updates: Annotated[dict[str, Any], Body()]
) -> TaskResponse:
    """Apply a partial update to a task."""
    try:
        task = await get_task_store().update_task(task_id, updates, project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.delete("/projects/{project_id}/tasks/{task_id}", response_model=TaskResponse)
async def delete_task(project_id: str, task_id: int, reorganize: bool = True) -> TaskResponse:
    """Delete a task and its subtasks.

    Args:
        project_id: Project owning the task
        task_id: Task to delete
        reorganize: Renumber remaining tasks 1..N afterwards
    """
    try:
        task = await get_task_store().delete_task(task_id, project_id, reorganize=reorganize)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.post("/projects/{project_id}/tasks/{task_id}/complete", response_model=TaskResponse)
async def complete_task(project_id: str, task_id: int) -> TaskResponse:
    """Mark a task completed; may trigger a maintenance pass."""
    try:
        task = await get_task_store().complete_task(task_id, project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.get("/projects/{project_id}/tasks/{task_id}/subtasks", response_model=list[TaskResponse])
async def get_subtasks(project_id: str, task_id: int) -> list[TaskResponse]:
    """List subtasks of a task."""
    try:
        subtasks = await get_task_store().get_subtasks(task_id, project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return [TaskResponse.from_task(task) for task in subtasks]


@router.post(
    "/projects/{project_id}/tasks/{task_id}/subtasks",
    response_model=TaskResponse,
    status_code=201,
)
async def add_subtask(
    project_id: str, task_id: int, data: Annotated[dict[str, Any], Body()]
) -> TaskResponse:
    """Create a subtask of task_id."""
    try:
        task = await get_task_store().add_subtask(data, task_id, project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.post("/projects/{project_id}/tasks/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    project_id: str, task_id: int, request: AssignRequest | None = None
) -> TaskResponse:
    """Assign a task (default: to the agent) and mark it in progress."""
    assignee = request.assignee if request else None
    try:
        task = await get_task_store().assign_task(task_id, project_id, assignee)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.post("/projects/{project_id}/tasks/{task_id}/progress", response_model=TaskResponse)
async def update_progress(
    project_id: str, task_id: int, request: ProgressRequest
) -> TaskResponse:
    """Report progress on an assigned task; 100 completes it."""
    try:
        task = await get_task_store().update_progress(task_id, request.progress, project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return TaskResponse.from_task(task)


@router.get("/assigned", response_model=list[TaskResponse])
async def get_assigned_tasks(
    project_id: Annotated[str | None, Query()] = None,
    assignee: Annotated[str | None, Query()] = None,
) -> list[TaskResponse]:
    """Tasks assigned to assignee (default: the agent), in one project or all."""
    try:
        tasks = await get_task_store().get_assigned_tasks(project_id, assignee)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return [TaskResponse.from_task(task) for task in tasks]


@router.post("/projects/{project_id}/cleanup", response_model=CleanupResponse)
async def cleanup_tasks(project_id: str, request: CleanupRequest | None = None) -> CleanupResponse:
    """Run a maintenance pass over a project.

    Returns:
        Actions performed plus a text summary grouped by action type
    """
    operations = request.operations if request else None
    try:
        actions = await get_maintenance_engine().perform_cleanup(project_id, operations)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return CleanupResponse(
        project_id=project_id,
        actions=[CleanupActionResponse.from_action(action) for action in actions],
        summary=format_actions(actions),
    )


@router.post("/projects/{project_id}/reload", response_model=ReloadResponse)
async def reload_tasks(project_id: str) -> ReloadResponse:
    """Discard in-memory state and re-read the project's task file."""
    try:
        tasks = await get_task_store().reload_tasks(project_id)
    except TaskKeeperError as e:
        raise _http_error(e) from e
    return ReloadResponse(project_id=project_id, task_count=len(tasks))
