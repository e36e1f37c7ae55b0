"""Tests for MaintenanceEngine."""

import asyncio

import pytest
from conftest import task_record

from task_keeper.errors import TaskKeeperError
from task_keeper.events import ProgressReached100, TaskCompleted
from task_keeper.maintenance.config import MaintenanceSettings
from task_keeper.maintenance.engine import CleanupAction, MaintenanceEngine, format_actions
from task_keeper.store.models import Task, TaskStatus
from task_keeper.store.task_store import TaskStore


def engine_with(store: TaskStore, **project_override) -> MaintenanceEngine:
    """Engine whose project p1 uses the given partial configuration."""
    return MaintenanceEngine(store, MaintenanceSettings(projects={"p1": project_override}))


def only(*stages: str) -> dict[str, bool]:
    names = ("metadata", "orphans", "quality", "duplicates", "renumber")
    return {name: name in stages for name in names}


def assert_orphan_invariant(tasks: list[Task]) -> None:
    for task in tasks:
        if task.is_subtask:
            owners = [t for t in tasks if not t.is_subtask and task.id in t.subtasks]
            assert len(owners) == 1, f"task #{task.id} listed by {len(owners)} top-level tasks"


def messy_project() -> list[dict]:
    return [
        task_record(1, "Parent task", subtasks=[2]),
        task_record(2, "Child task", status="completed", progress=50, is_subtask=True),
        task_record(3, "Orphan child", is_subtask=True),
        task_record(4, "Assigned task", status="in-progress", assigned_to="agent", progress=20),
        task_record(5, "Idle task", progress=40),
        task_record(6, "Hi", "ok"),
        task_record(7, "Assigned task", status="in-progress", assigned_to="agent", progress=20),
    ]


@pytest.mark.asyncio
async def test_duplicates_keep_earliest_created(store: TaskStore, write_tasks) -> None:
    """Test whitespace and case variants are merged into the earliest-created task."""
    write_tasks(
        "p1",
        [
            task_record(1, "Fix   bug", "desc", created_at="2024-01-02T00:00:00+00:00"),
            task_record(2, "Fix bug", "desc", created_at="2024-01-01T00:00:00+00:00"),
        ],
    )
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1")

    tasks = await store.list_tasks("p1")
    assert [(task.id, task.title) for task in tasks] == [(1, "Fix bug")]
    assert "duplicate_delete" in [action.type for action in actions]
    assert "reorganize_ids" in [action.type for action in actions]


@pytest.mark.asyncio
async def test_duplicate_merge_transfers_subtasks(store: TaskStore, write_tasks) -> None:
    write_tasks(
        "p1",
        [
            task_record(1, "Build the parser", subtasks=[3]),
            task_record(2, "Build the parser", subtasks=[4]),
            task_record(3, "Tokenizer stage", "Split the input into tokens", is_subtask=True),
            task_record(4, "Grammar stage", "Turn tokens into a syntax tree", is_subtask=True),
        ],
    )
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1", operations=only("duplicates"))

    tasks = await store.list_tasks("p1")
    assert [task.id for task in tasks] == [1, 3, 4]
    assert tasks[0].subtasks == [3, 4]
    assert [action.type for action in actions] == ["duplicate_subtask_transfer", "duplicate_delete"]


@pytest.mark.asyncio
async def test_duplicate_threshold_respected(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "Write unit tests"), task_record(2, "Write integration tests")])
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1", operations=only("duplicates"))

    assert actions == []
    assert len(await store.list_tasks("p1")) == 2


@pytest.mark.asyncio
async def test_duplicates_beyond_compare_cap_are_ignored(store: TaskStore, write_tasks) -> None:
    write_tasks(
        "p1",
        [task_record(1, "Unique first task"), task_record(2, "Same thing"), task_record(3, "Same thing")],
    )
    engine = engine_with(store, operations={"duplicate_detection": {"max_tasks_to_compare": 2}})

    actions = await engine.perform_cleanup("p1", operations=only("duplicates"))

    assert actions == []


@pytest.mark.asyncio
async def test_oracle_scorer_is_used_when_configured(store: TaskStore, write_tasks) -> None:
    class FixedOracle:
        def __init__(self) -> None:
            self.calls = 0

        async def score(self, texts, threshold=None):
            self.calls += 1
            return [[1.0 for _ in texts] for _ in texts]

    oracle = FixedOracle()
    write_tasks("p1", [task_record(1, "Completely different"), task_record(2, "Nothing alike")])
    engine = MaintenanceEngine(store, oracle=oracle)

    await engine.perform_cleanup("p1", operations=only("duplicates"))

    assert oracle.calls == 1
    assert len(await store.list_tasks("p1")) == 1


@pytest.mark.asyncio
async def test_quality_fix(store: TaskStore, write_tasks) -> None:
    """Test short title and description are expanded and missing priority set to medium."""
    write_tasks("p1", [task_record(1, "Hi", "ok", priority=None)])
    engine = engine_with(
        store,
        operations={
            "quality": {"action": "fix", "min_title_length": 5, "min_description_length": 10}
        },
    )

    actions = await engine.perform_cleanup("p1")

    task = await store.get_task(1, "p1")
    assert len(task.title) >= 5
    assert len(task.description) >= 10
    assert task.priority == "medium"
    assert [action.type for action in actions] == ["quality_fix"]
    assert await engine.perform_cleanup("p1") == []


@pytest.mark.asyncio
async def test_quality_fix_blank_fields(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "", "")])
    engine = engine_with(store, operations={"quality": {"action": "fix"}})

    await engine.perform_cleanup("p1", operations=only("quality"))

    task = await store.get_task(1, "p1")
    assert task.title == "Task 1"
    assert task.description.startswith("Task 1 created at 2024-01-01")


@pytest.mark.asyncio
async def test_quality_delete(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "Hi", "ok"), task_record(2, "Proper task title")])
    engine = engine_with(store, operations={"quality": {"action": "delete"}})

    actions = await engine.perform_cleanup("p1")

    tasks = await store.list_tasks("p1")
    assert [(task.id, task.title) for task in tasks] == [(1, "Proper task title")]
    assert [action.type for action in actions] == ["quality_delete", "reorganize_ids"]


@pytest.mark.asyncio
async def test_quality_flag_reports_once(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "Hi", "ok")])
    engine = MaintenanceEngine(store)

    first = await engine.perform_cleanup("p1")
    second = await engine.perform_cleanup("p1")

    assert [action.type for action in first] == ["quality_flag"]
    assert second == []
    assert (await store.get_task(1, "p1")).title == "Hi"


@pytest.mark.asyncio
async def test_orphan_reassigned_to_first_open_top_level_task(
    store: TaskStore, write_tasks
) -> None:
    write_tasks(
        "p1",
        [
            task_record(1, "Finished parent", status="completed", progress=100,
                        completed_at="2024-01-01T00:00:01+00:00"),
            task_record(2, "Open parent"),
            task_record(3, "Lost child", is_subtask=True),
        ],
    )
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1", operations=only("orphans"))

    assert (await store.get_task(2, "p1")).subtasks == [3]
    assert [action.type for action in actions] == ["orphan_reassign"]
    assert_orphan_invariant(await store.list_tasks("p1"))


@pytest.mark.asyncio
async def test_orphan_reassigned_to_configured_parent(store: TaskStore, write_tasks) -> None:
    write_tasks(
        "p1",
        [task_record(1, "First parent"), task_record(2, "Second parent"),
         task_record(3, "Lost child", is_subtask=True)],
    )
    engine = engine_with(store, operations={"orphaned_subtasks": {"reassign_to_task_id": 2}})

    await engine.perform_cleanup("p1", operations=only("orphans"))

    assert (await store.get_task(2, "p1")).subtasks == [3]
    assert (await store.get_task(1, "p1")).subtasks == []


@pytest.mark.asyncio
async def test_orphan_converted_when_no_parent_exists(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "Lost child", is_subtask=True)])
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1", operations=only("orphans"))

    assert (await store.get_task(1, "p1")).is_subtask is False
    assert [action.type for action in actions] == ["orphan_convert"]


@pytest.mark.asyncio
async def test_orphan_delete_policy(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "Top level task"), task_record(2, "Lost child", is_subtask=True)])
    engine = engine_with(store, operations={"orphaned_subtasks": {"action": "delete"}})

    actions = await engine.perform_cleanup("p1", operations=only("orphans"))

    assert [task.id for task in await store.list_tasks("p1")] == [1]
    assert [action.type for action in actions] == ["orphan_delete"]


@pytest.mark.asyncio
async def test_orphan_convert_policy(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", [task_record(1, "Top level task"), task_record(2, "Lost child", is_subtask=True)])
    engine = engine_with(store, operations={"orphaned_subtasks": {"action": "convert"}})

    await engine.perform_cleanup("p1", operations=only("orphans"))

    assert (await store.get_task(2, "p1")).is_subtask is False
    assert (await store.get_task(1, "p1")).subtasks == []


@pytest.mark.asyncio
async def test_metadata_pass_makes_completion_consistent(store: TaskStore, write_tasks) -> None:
    write_tasks(
        "p1",
        [
            task_record(1, "Done but stale", status="completed", progress=60),
            task_record(2, "Never started", progress=35),
            task_record(3, "Assigned task", assigned_to="agent", status="in-progress"),
        ],
    )
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1", operations=only("metadata"))

    tasks = await store.list_tasks("p1")
    for task in tasks:
        if task.status == TaskStatus.COMPLETED:
            assert task.progress == 100
            assert task.completed_at is not None
    assert tasks[1].progress == 0
    assert tasks[2].assigned_at is not None
    assert [action.task_id for action in actions] == [1, 2, 3]


@pytest.mark.asyncio
async def test_metadata_leaves_parent_held_at_100_by_subtasks(
    store: TaskStore, write_tasks
) -> None:
    write_tasks(
        "p1",
        [
            task_record(1, "Parent task", progress=100, subtasks=[2]),
            task_record(2, "Child task", status="completed", progress=100, is_subtask=True,
                        completed_at="2024-01-01T00:00:02+00:00"),
        ],
    )
    engine = MaintenanceEngine(store)

    assert await engine.perform_cleanup("p1", operations=only("metadata")) == []


def subtask_duplicate_of_parent() -> list[dict]:
    """Earliest-created duplicate is a subtask of the later one."""
    return [
        task_record(1, "Fix login bug", subtasks=[2], created_at="2024-01-02T00:00:00+00:00"),
        task_record(2, "Fix login bug", is_subtask=True, created_at="2024-01-01T00:00:00+00:00"),
    ]


@pytest.mark.asyncio
async def test_merge_promotes_survivor_whose_parent_was_a_duplicate(
    store: TaskStore, write_tasks
) -> None:
    write_tasks("p1", subtask_duplicate_of_parent())
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1")

    assert [action.type for action in actions] == [
        "duplicate_delete",
        "duplicate_promote",
        "reorganize_ids",
    ]
    tasks = await store.list_tasks("p1")
    assert [(task.id, task.is_subtask, task.subtasks) for task in tasks] == [(1, False, [])]


@pytest.mark.asyncio
@pytest.mark.parametrize("records", [messy_project, subtask_duplicate_of_parent])
async def test_full_pass_is_idempotent(store: TaskStore, write_tasks, records) -> None:
    write_tasks("p1", records())
    engine = MaintenanceEngine(store)

    first = await engine.perform_cleanup("p1")
    second = await engine.perform_cleanup("p1")

    assert first
    assert second == []
    tasks = await store.list_tasks("p1")
    assert [task.id for task in tasks] == list(range(1, len(tasks) + 1))
    assert_orphan_invariant(tasks)
    for task in tasks:
        if task.status == TaskStatus.COMPLETED:
            assert task.progress == 100 and task.completed_at is not None


@pytest.mark.asyncio
async def test_pass_and_concurrent_create_do_not_interleave(store: TaskStore, write_tasks) -> None:
    """Test a create racing a merge-and-renumber pass leaves unique, contiguous ids."""
    write_tasks(
        "p1",
        [
            task_record(1, "Fix bug", "desc", created_at="2024-01-02T00:00:00+00:00"),
            task_record(2, "Fix   bug", "desc", created_at="2024-01-01T00:00:00+00:00"),
            task_record(3, "Write release notes"),
        ],
    )
    engine = MaintenanceEngine(store)

    actions, created = await asyncio.gather(
        engine.perform_cleanup("p1"),
        store.create_task(
            {"title": "Add login page", "description": "Build the new login page"}, "p1"
        ),
    )

    tasks = await store.list_tasks("p1")
    assert [task.id for task in tasks] == [1, 2, 3]
    assert sorted(task.title for task in tasks) == [
        "Add login page",
        "Fix   bug",
        "Write release notes",
    ]
    assert created.title == "Add login page"
    assert "duplicate_delete" in [action.type for action in actions]
    assert await engine.perform_cleanup("p1") == []


@pytest.mark.asyncio
async def test_failure_on_one_task_does_not_abort_pass(
    store: TaskStore, write_tasks, monkeypatch: pytest.MonkeyPatch
) -> None:
    write_tasks(
        "p1",
        [
            task_record(1, "Bad task", status="completed", progress=10),
            task_record(2, "Good task", status="completed", progress=10),
        ],
    )
    original = store.update_task

    async def flaky_update(task_id, updates, project_id):
        if task_id == 1:
            raise TaskKeeperError("disk on fire")
        return await original(task_id, updates, project_id)

    monkeypatch.setattr(store, "update_task", flaky_update)
    engine = MaintenanceEngine(store)

    actions = await engine.perform_cleanup("p1", operations=only("metadata"))

    assert [action.task_id for action in actions] == [2]
    assert (await store.get_task(2, "p1")).progress == 100


@pytest.mark.asyncio
async def test_disabled_project_does_nothing(store: TaskStore, write_tasks) -> None:
    write_tasks("p1", messy_project())
    engine = engine_with(store, enabled=False)

    assert await engine.perform_cleanup("p1") == []


def test_register_hooks_is_idempotent(store: TaskStore) -> None:
    engine = MaintenanceEngine(store)

    engine.register_hooks()
    engine.register_hooks()

    assert len(store.events.handlers(TaskCompleted)) == 1
    assert len(store.events.handlers(ProgressReached100)) == 1


@pytest.mark.asyncio
async def test_progress_100_triggers_cleanup(store: TaskStore) -> None:
    """Test completing assigned work runs a pass that removes a duplicate."""
    engine = MaintenanceEngine(store)
    engine.register_hooks()
    await store.create_task({"title": "Implement login", "description": "Login form and session"}, "p1")
    await store.create_task({"title": "implement  LOGIN", "description": "login form and session"}, "p1")
    await store.create_task(
        {"title": "Agent work item", "description": "Assigned to the agent", "assigned_to": "agent"},
        "p1",
    )

    task = await store.update_progress(3, 100, "p1")

    assert task.status == TaskStatus.COMPLETED
    titles = [t.title for t in await store.list_tasks("p1")]
    assert titles == ["Implement login", "Agent work item"]


@pytest.mark.asyncio
async def test_trigger_disabled_skips_cleanup(store: TaskStore) -> None:
    engine = engine_with(store, triggers={"on_task_completion": False})
    engine.register_hooks()
    await store.create_task({"title": "Same task", "description": "Same description"}, "p1")
    await store.create_task({"title": "Same task", "description": "Same description"}, "p1")

    await store.complete_task(1, "p1")

    assert len(await store.list_tasks("p1")) == 2


def test_format_actions_groups_by_type() -> None:
    actions = [
        CleanupAction("metadata_fix", "Task #1 fixed", 1),
        CleanupAction("duplicate_delete", "Deleted task #3", 3),
        CleanupAction("metadata_fix", "Task #2 fixed", 2),
    ]

    assert format_actions(actions) == (
        "Metadata Fix:\n- Task #1 fixed\n- Task #2 fixed\n\nDuplicate Delete:\n- Deleted task #3"
    )
    assert format_actions([]) == "No cleanup actions were performed."
