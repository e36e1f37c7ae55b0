"""Task file persistence (one YAML document per project)."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from task_keeper.store.models import Task
from task_keeper.validation import (
    TASKS_FILENAME,
    is_valid_project_id,
    project_dir_path,
    tasks_file_path,
)

logger = logging.getLogger(__name__)


class TaskFile:
    """Reads and writes ``<tasks_dir>/<project_id>/tasks.yaml``.

    All methods are blocking; the store runs them in a worker thread.
    """

    def __init__(self, tasks_dir: Path) -> None:
        """Initialize with the root directory holding project directories."""
        self._tasks_dir = Path(tasks_dir)

    @property
    def tasks_dir(self) -> Path:
        """Root directory of all projects."""
        return self._tasks_dir

    def path_for(self, project_id: str) -> Path:
        """Task file path for project."""
        return tasks_file_path(self._tasks_dir, project_id)

    def ensure_project(self, project_id: str) -> Path:
        """Create the project directory if needed and return the task file path."""
        project_dir = project_dir_path(self._tasks_dir, project_id)
        project_dir.mkdir(parents=True, exist_ok=True)
        return project_dir / TASKS_FILENAME

    def read(self, project_id: str) -> list[Task]:
        """Load all tasks of a project.

        Malformed individual records are skipped with a warning.

        Raises:
            FileNotFoundError: If the task file does not exist
            ValueError: If the file is not a YAML list of mappings
        """
        file_path = self.path_for(project_id)
        content = file_path.read_text(encoding="utf-8")

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {file_path}") from e

        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError(f"Task file {file_path} does not contain a list")

        tasks: list[Task] = []
        for record in data:
            if not isinstance(record, dict):
                logger.warning(f"[TaskFile] Skipping non-mapping record in {file_path}")
                continue
            try:
                tasks.append(Task.from_dict(record, project_id))
            except ValueError as e:
                logger.warning(f"[TaskFile] Skipping malformed task in {file_path}: {e}")
        return tasks

    def write(self, project_id: str, records: list[dict[str, Any]]) -> int:
        """Write serialized tasks and return the file's new mtime in nanoseconds."""
        file_path = self.ensure_project(project_id)
        content = yaml.safe_dump(
            records, default_flow_style=False, sort_keys=False, allow_unicode=True
        )

        # Replace in one step so readers never observe a half-written file
        tmp_path = file_path.with_name(f".{TASKS_FILENAME}.tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, file_path)
        return file_path.stat().st_mtime_ns

    def mtime_ns(self, project_id: str) -> int | None:
        """Modification time of the task file, or None if it does not exist."""
        try:
            return self.path_for(project_id).stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def list_projects(self) -> list[str]:
        """Project ids that have a persisted task file, sorted."""
        if not self._tasks_dir.exists():
            return []
        projects = []
        for entry in self._tasks_dir.iterdir():
            if not entry.is_dir() or not is_valid_project_id(entry.name):
                continue
            if (entry / TASKS_FILENAME).is_file():
                projects.append(entry.name)
        return sorted(projects)
