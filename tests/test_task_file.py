"""Tests for TaskFile persistence."""

from pathlib import Path

import pytest
import yaml
from conftest import task_record

from task_keeper.store.task_file import TaskFile


def test_read_parses_records(task_file: TaskFile, write_tasks) -> None:
    write_tasks(
        "p1",
        [
            task_record(1, "Parent task", subtasks=[2], status="in-progress", assigned_to="agent"),
            task_record(2, "Child task", is_subtask=True, priority=None),
        ],
    )

    tasks = task_file.read("p1")

    assert [task.id for task in tasks] == [1, 2]
    assert tasks[0].subtasks == [2]
    assert tasks[0].status == "in-progress"
    assert tasks[0].assigned_to == "agent"
    assert tasks[1].is_subtask is True
    assert tasks[1].priority is None
    assert tasks[1].created_at.tzinfo is not None


def test_read_missing_file_raises(task_file: TaskFile) -> None:
    with pytest.raises(FileNotFoundError):
        task_file.read("p1")


def test_read_corrupt_file_raises_value_error(task_file: TaskFile, tasks_dir: Path) -> None:
    (tasks_dir / "p1").mkdir()
    (tasks_dir / "p1" / "tasks.yaml").write_text("id: [unclosed")

    with pytest.raises(ValueError):
        task_file.read("p1")


def test_read_non_list_raises_value_error(task_file: TaskFile, tasks_dir: Path) -> None:
    (tasks_dir / "p1").mkdir()
    (tasks_dir / "p1" / "tasks.yaml").write_text("id: 1\n")

    with pytest.raises(ValueError, match="does not contain a list"):
        task_file.read("p1")


def test_read_skips_malformed_records(task_file: TaskFile, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "Good task"), {"id": "x", "title": "bad"}, "junk"])

    tasks = task_file.read("p1")

    assert [task.id for task in tasks] == [1]


def test_write_produces_snake_case_yaml(task_file: TaskFile, tasks_dir: Path) -> None:
    task_file.write("p1", [task_record(1, "Write me")])

    data = yaml.safe_load((tasks_dir / "p1" / "tasks.yaml").read_text())
    assert data[0]["title"] == "Write me"
    assert "is_subtask" in data[0]
    assert not (tasks_dir / "p1" / ".tasks.yaml.tmp").exists()


def test_list_projects_only_returns_directories_with_task_files(
    task_file: TaskFile, tasks_dir: Path, write_tasks
) -> None:
    write_tasks("beta", [])
    write_tasks("alpha", [])
    (tasks_dir / "empty").mkdir()
    (tasks_dir / "bad name").mkdir()
    (tasks_dir / "bad name" / "tasks.yaml").write_text("[]")

    assert task_file.list_projects() == ["alpha", "beta"]


def test_mtime_ns_is_none_for_missing_file(task_file: TaskFile) -> None:
    assert task_file.mtime_ns("p1") is None
