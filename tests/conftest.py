"""Test fixtures for TaskKeeper."""

from pathlib import Path

import pytest
import yaml

from task_keeper.cache import TTLCache
from task_keeper.maintenance.config import MaintenanceSettings
from task_keeper.maintenance.engine import MaintenanceEngine
from task_keeper.store.task_file import TaskFile
from task_keeper.store.task_store import TaskStore
from task_keeper.write_coalescer import WriteCoalescer


@pytest.fixture
def tasks_dir(tmp_path: Path) -> Path:
    """Create temporary tasks root directory."""
    root = tmp_path / "tasks"
    root.mkdir()
    return root


@pytest.fixture
def task_file(tasks_dir: Path) -> TaskFile:
    return TaskFile(tasks_dir)


@pytest.fixture
def store(task_file: TaskFile) -> TaskStore:
    """Store with a short write delay so tests can flush quickly."""
    return TaskStore(
        task_file,
        TTLCache(ttl=60.0, max_size=10),
        WriteCoalescer(delay=0.01),
        agent_name="agent",
    )


@pytest.fixture
def engine(store: TaskStore) -> MaintenanceEngine:
    """Engine with default settings and no oracle."""
    return MaintenanceEngine(store, MaintenanceSettings())


@pytest.fixture
def write_tasks(tasks_dir: Path):
    """Write raw task records to a project's task file."""

    def _write(project_id: str, records: list[dict]) -> Path:
        project_dir = tasks_dir / project_id
        project_dir.mkdir(parents=True, exist_ok=True)
        path = project_dir / "tasks.yaml"
        path.write_text(yaml.safe_dump(records, sort_keys=False))
        return path

    return _write


def task_record(task_id: int, title: str, description: str = "A task description", **fields) -> dict:
    """Persisted task mapping with sensible defaults."""
    record = {
        "id": task_id,
        "title": title,
        "description": description,
        "status": "pending",
        "priority": "medium",
        "progress": 0,
        "dependencies": [],
        "subtasks": [],
        "is_subtask": False,
        "assigned_to": None,
        "project_id": "p1",
        "created_at": f"2024-01-01T00:00:{task_id:02d}+00:00",
        "updated_at": f"2024-01-01T00:00:{task_id:02d}+00:00",
        "completed_at": None,
        "assigned_at": None,
    }
    record.update(fields)
    return record
