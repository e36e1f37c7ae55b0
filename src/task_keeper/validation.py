"""Identifier validation and path sanitization."""

import logging
import re
from pathlib import Path
from typing import Any

from task_keeper.errors import ValidationError

logger = logging.getLogger(__name__)

PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
PROJECT_ID_MAX_LENGTH = 50
TASKS_FILENAME = "tasks.yaml"


def is_valid_project_id(project_id: Any) -> bool:
    """Check project id is a non-empty string of letters, digits, '-' or '_' (max 50)."""
    if not isinstance(project_id, str) or not project_id:
        return False
    if len(project_id) > PROJECT_ID_MAX_LENGTH:
        return False
    return PROJECT_ID_PATTERN.match(project_id) is not None


def is_valid_task_id(task_id: Any) -> bool:
    """Check task id is a positive integer.

    Numeric strings are accepted (ids arrive as path parameters), booleans are not.
    """
    if isinstance(task_id, bool):
        return False
    if isinstance(task_id, str):
        if not task_id.strip().isdigit():
            return False
        task_id = int(task_id)
    return isinstance(task_id, int) and task_id > 0


def require_project_id(project_id: Any) -> str:
    """Return project id or raise ValidationError."""
    if not project_id:
        raise ValidationError("Project ID is required", {"field": "project_id"})
    if not is_valid_project_id(project_id):
        logger.warning(f"[Validation] Invalid project ID format: {project_id!r}")
        raise ValidationError(
            f"Invalid project ID format: {project_id}",
            {"field": "project_id", "value": str(project_id)},
        )
    return project_id


def require_task_id(task_id: Any, field: str = "id") -> int:
    """Return task id as int or raise ValidationError."""
    if not is_valid_task_id(task_id):
        raise ValidationError(f"Invalid task ID: {task_id}", {"field": field, "value": task_id})
    return int(task_id)


def project_dir_path(base_dir: Path, project_id: str) -> Path:
    """Resolve a project directory, refusing anything outside base_dir."""
    require_project_id(project_id)
    base = base_dir.resolve()
    project_dir = (base / project_id).resolve()
    if project_dir.parent != base:
        logger.error(f"[Validation] Path traversal attempt: base={base} project={project_id}")
        raise ValidationError(
            f"Invalid project directory for project {project_id}",
            {"field": "project_id", "value": project_id},
        )
    return project_dir


def tasks_file_path(base_dir: Path, project_id: str) -> Path:
    """Path of the project's persisted task file."""
    return project_dir_path(base_dir, project_id) / TASKS_FILENAME
