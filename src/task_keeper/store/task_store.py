"""Task store: per-project task lists, indices, caching and write-behind persistence."""

import asyncio
import functools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from task_keeper.cache import TTLCache
from task_keeper.errors import (
    FileSystemError,
    StateError,
    TaskKeeperError,
    TaskNotFoundError,
    ValidationError,
)
from task_keeper.events import EventBus, ProgressReached100, TaskCompleted
from task_keeper.store.models import (
    DeleteCriteria,
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
    utcnow,
)
from task_keeper.store.renumber import renumber_tasks
from task_keeper.store.task_file import TaskFile
from task_keeper.validation import require_project_id, require_task_id
from task_keeper.write_coalescer import WriteCoalescer

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class _TaskIndex:
    """Lookups derived from a project's task list; rebuilt after every change."""

    by_id: dict[int, Task] = field(default_factory=dict)
    by_status: dict[TaskStatus, list[int]] = field(default_factory=dict)
    by_assignee: dict[str, list[int]] = field(default_factory=dict)
    parent_of: dict[int, int] = field(default_factory=dict)

    @classmethod
    def build(cls, tasks: list[Task]) -> "_TaskIndex":
        """Index a task list.

        Args:
            tasks: Project tasks in stored order

        Returns:
            Index where the first task wins for a repeated id or subtask listing
        """
        index = cls()
        for task in tasks:
            if task.id in index.by_id:
                logger.warning(f"[TaskStore] Duplicate task id {task.id} in {task.project_id}")
                continue
            index.by_id[task.id] = task
            index.by_status.setdefault(task.status, []).append(task.id)
            if task.assigned_to:
                index.by_assignee.setdefault(task.assigned_to, []).append(task.id)
        for task in tasks:
            for subtask_id in task.subtasks:
                index.parent_of.setdefault(subtask_id, task.id)
        return index


class _ProjectLock:
    """asyncio lock that the asyncio task holding it may enter again.

    Lets a maintenance pass, triggered while a completion holds the lock, call
    back into store mutations without deadlocking.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task[Any] | None = None
        self._depth = 0

    async def __aenter__(self) -> "_ProjectLock":
        current = asyncio.current_task()
        if self._owner is not None and self._owner is current:
            self._depth += 1
            return self
        await self._lock.acquire()
        self._owner = current
        self._depth = 1
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()


def _validate(model: type[ModelT], data: Any) -> ModelT:
    """Validate input into a pydantic model, raising our ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {model.__name__}: {errors}", {"errors": errors}) from e


class TaskStore:
    """Owns every project's in-memory task list.

    The in-memory list is the source of truth for reads. Each mutation updates the
    shared cache immediately and schedules a coalesced write of the project's task
    file; call ``flush`` to wait for the write. Mutations on the same project are
    serialized by a per-project lock.
    """

    def __init__(
        self,
        task_file: TaskFile,
        cache: TTLCache,
        coalescer: WriteCoalescer,
        events: EventBus | None = None,
        agent_name: str = "windsurf",
    ) -> None:
        """Initialize store.

        Args:
            task_file: Persistence for project task files
            cache: Shared task-list cache (keys namespaced by project id)
            coalescer: Shared write coalescer (keys namespaced by project id)
            events: Bus that receives completion events
            agent_name: Default assignee for assignment queries
        """
        self._file = task_file
        self._cache = cache
        self._coalescer = coalescer
        self.events = events or EventBus()
        self._agent_name = agent_name
        self._tasks: dict[str, list[Task]] = {}
        self._indices: dict[str, _TaskIndex] = {}
        self._locks: dict[str, _ProjectLock] = {}
        self._known_mtimes: dict[str, int] = {}

    # ---- lifecycle ----

    def project_lock(self, project_id: str) -> _ProjectLock:
        """Lock serializing mutations of one project."""
        project_id = require_project_id(project_id)
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = _ProjectLock()
        return lock

    async def init(self, project_id: str) -> None:
        """Make a project's tasks available in memory.

        Uses a live cache entry without I/O; otherwise reads the task file once,
        creating an empty one when it is missing or unreadable.

        Raises:
            ValidationError: If project id is malformed
            FileSystemError: If the project directory cannot be accessed
        """
        project_id = require_project_id(project_id)

        cached = self._cache.get(self._cache_key(project_id))
        if cached is not None:
            if self._tasks.get(project_id) is not cached:
                logger.debug(f"[TaskStore] Using cached tasks for {project_id}")
                self._tasks[project_id] = cached
                self._rebuild_index(project_id)
            return

        if project_id in self._tasks:
            self._cache.set(self._cache_key(project_id), self._tasks[project_id])
            return

        await self._load(project_id)

    async def reload_tasks(self, project_id: str) -> list[Task]:
        """Re-read the project's task file, replacing in-memory state.

        Writes already scheduled for the project land before the file is read.
        """
        project_id = require_project_id(project_id)
        async with self.project_lock(project_id):
            await self.flush(project_id)
            self._cache.delete(self._cache_key(project_id))
            self._tasks.pop(project_id, None)
            self._indices.pop(project_id, None)
            await self._load(project_id)
            logger.info(f"[TaskStore] Reloaded {len(self._tasks[project_id])} tasks for {project_id}")
            return self._copies(self._tasks[project_id])

    async def reload_if_changed(self, project_id: str) -> bool:
        """Reload a loaded project whose file was changed by someone else.

        Skipped while a write for the project is pending or when the file still has
        the modification time of the last read or write done by this store.
        """
        project_id = require_project_id(project_id)
        if project_id not in self._tasks:
            return False
        if self._coalescer.has_pending(self._write_key(project_id)):
            logger.debug(f"[TaskStore] Ignoring change for {project_id}: write pending")
            return False

        mtime = await asyncio.to_thread(self._file.mtime_ns, project_id)
        if mtime is None or mtime == self._known_mtimes.get(project_id):
            return False

        logger.info(f"[TaskStore] Task file for {project_id} changed externally")
        await self.reload_tasks(project_id)
        return True

    async def flush(self, project_id: str | None = None) -> None:
        """Wait until pending writes (one project or all) reach disk.

        Raises:
            FileSystemError: If a write failed
        """
        if project_id is None:
            await self._coalescer.flush_all()
            return
        project_id = require_project_id(project_id)
        await self._coalescer.flush(self._write_key(project_id))

    async def close(self) -> None:
        """Flush every pending write."""
        await self.flush()

    def save_tasks(self, project_id: str) -> "asyncio.Future[Any]":
        """Refresh the cache entry and schedule a coalesced write of the project file.

        Returns:
            Future resolved once the write that includes this state has landed
        """
        project_id = require_project_id(project_id)
        self._cache.set(self._cache_key(project_id), self._tasks.setdefault(project_id, []))
        return self._coalescer.schedule(
            self._write_key(project_id), functools.partial(self._write, project_id)
        )

    # ---- queries ----

    async def list_tasks(self, project_id: str) -> list[Task]:
        """All tasks of a project in stored order."""
        project_id = require_project_id(project_id)
        await self.init(project_id)
        return self._copies(self._tasks[project_id])

    async def get_task(self, task_id: int, project_id: str) -> Task:
        """Task by id.

        Raises:
            TaskNotFoundError: If no such task exists
        """
        project_id = require_project_id(project_id)
        task_id = require_task_id(task_id)
        await self.init(project_id)
        return self._find(project_id, task_id).copy()

    async def get_tasks_by_status(self, status: TaskStatus | str, project_id: str) -> list[Task]:
        """Tasks with the given status."""
        project_id = require_project_id(project_id)
        try:
            status = TaskStatus(status)
        except ValueError as e:
            raise ValidationError(
                f"Invalid status: {status}", {"field": "status", "value": str(status)}
            ) from e
        await self.init(project_id)

        index = self._indices.get(project_id)
        if index is not None:
            return [index.by_id[task_id].copy() for task_id in index.by_status.get(status, [])]
        return [task.copy() for task in self._tasks[project_id] if task.status == status]

    async def get_assigned_tasks(
        self, project_id: str | None = None, assignee: str | None = None
    ) -> list[Task]:
        """Tasks assigned to assignee (default: the agent) in one or all projects."""
        assignee = assignee or self._agent_name
        if project_id is not None:
            project_id = require_project_id(project_id)
            await self.init(project_id)
            return self._assigned(project_id, assignee)

        project_ids = sorted(set(await self.get_projects()) | set(self._tasks))
        assigned: list[Task] = []
        for pid in project_ids:
            try:
                await self.init(pid)
                assigned.extend(self._assigned(pid, assignee))
            except TaskKeeperError as e:
                logger.error(f"[TaskStore] Failed to collect assigned tasks for {pid}: {e}")
        return assigned

    async def get_subtasks(self, parent_id: int, project_id: str) -> list[Task]:
        """Existing subtasks of a task, in listed order."""
        project_id = require_project_id(project_id)
        parent_id = require_task_id(parent_id, "parent_id")
        await self.init(project_id)
        parent = self._find(project_id, parent_id)
        by_id = self._index(project_id).by_id
        return [by_id[sub_id].copy() for sub_id in parent.subtasks if sub_id in by_id]

    async def get_parent_id(self, task_id: int, project_id: str) -> int | None:
        """Id of the task listing task_id as a subtask, if any."""
        project_id = require_project_id(project_id)
        task_id = require_task_id(task_id)
        await self.init(project_id)
        return self._index(project_id).parent_of.get(task_id)

    async def get_projects(self) -> list[str]:
        """Projects that have a persisted task file."""
        try:
            return await asyncio.to_thread(self._file.list_projects)
        except OSError as e:
            raise FileSystemError(
                "Failed to list projects", "list_projects", str(self._file.tasks_dir)
            ) from e

    # ---- mutations ----

    async def create_task(
        self,
        data: TaskCreate | Mapping[str, Any],
        project_id: str,
        parent_id: int | None = None,
    ) -> Task:
        """Create a task with the next id (current task count + 1).

        When parent_id is given the new task is flagged as a subtask and appended to
        the parent's subtask list.

        Raises:
            ValidationError: If data is invalid or parent_id is itself a subtask
            TaskNotFoundError: If parent_id does not exist
        """
        project_id = require_project_id(project_id)
        if parent_id is not None:
            parent_id = require_task_id(parent_id, "parent_id")
        draft = _validate(TaskCreate, data)

        async with self.project_lock(project_id):
            await self.init(project_id)
            tasks = self._tasks[project_id]
            parent = self._find(project_id, parent_id) if parent_id is not None else None
            if parent is not None and parent.is_subtask:
                raise ValidationError(
                    f"Task #{parent_id} in project {project_id} is a subtask and cannot "
                    f"have subtasks of its own",
                    {"field": "parent_id", "value": parent_id},
                )

            # Not a monotonic counter: ids can repeat after deletes without renumbering
            new_id = len(tasks) + 1
            if new_id in self._index(project_id).by_id:
                logger.warning(
                    f"[TaskStore] New task id {new_id} collides with an existing task "
                    f"in {project_id}; renumber the project to restore unique ids"
                )

            now = utcnow()
            task = Task(
                id=new_id,
                title=draft.title,
                description=draft.description,
                project_id=project_id,
                created_at=now,
                updated_at=now,
                status=draft.status,
                priority=draft.priority,
                progress=draft.progress,
                dependencies=list(draft.dependencies),
                subtasks=[],
                is_subtask=parent is not None,
                assigned_to=draft.assigned_to,
            )
            tasks.append(task)
            if parent is not None:
                parent.subtasks.append(new_id)
                parent.updated_at = now

            self._commit(project_id)
            logger.info(f"[TaskStore] Created task #{new_id} in {project_id}")
            return task.copy()

    async def add_subtask(
        self, data: TaskCreate | Mapping[str, Any], parent_id: int, project_id: str
    ) -> Task:
        """Create a task as a subtask of parent_id."""
        parent_id = require_task_id(parent_id, "parent_id")
        return await self.create_task(data, project_id, parent_id=parent_id)

    async def update_task(
        self, task_id: int, updates: TaskUpdate | Mapping[str, Any], project_id: str
    ) -> Task:
        """Merge a patch into a task and stamp updated_at.

        A progress update on a task whose subtasks are all completed is raised to 100.
        """
        project_id = require_project_id(project_id)
        task_id = require_task_id(task_id)
        patch = _validate(TaskUpdate, updates).model_dump(exclude_unset=True)

        async with self.project_lock(project_id):
            await self.init(project_id)
            task = self._apply_update(project_id, task_id, patch)
            self._commit(project_id)
            return task.copy()

    async def complete_task(self, task_id: int, project_id: str) -> Task:
        """Mark a task completed and notify TaskCompleted subscribers."""
        project_id = require_project_id(project_id)
        task_id = require_task_id(task_id)

        async with self.project_lock(project_id):
            await self.init(project_id)
            completed = self._mark_completed(project_id, task_id)
            logger.info(f"[TaskStore] Completed task #{task_id} in {project_id}")
            await self.events.emit(TaskCompleted(project_id=project_id, task=completed.copy()))
            return completed

    async def assign_task(
        self, task_id: int, project_id: str, assignee: str | None = None
    ) -> Task:
        """Assign a task (default: to the agent) and start it at 0%."""
        project_id = require_project_id(project_id)
        task_id = require_task_id(task_id)
        assignee = assignee or self._agent_name

        async with self.project_lock(project_id):
            await self.init(project_id)
            task = self._apply_update(
                project_id,
                task_id,
                {
                    "status": TaskStatus.IN_PROGRESS,
                    "assigned_to": assignee,
                    "assigned_at": utcnow(),
                    "progress": 0,
                },
            )
            self._commit(project_id)
            logger.info(f"[TaskStore] Assigned task #{task_id} in {project_id} to {assignee}")
            return task.copy()

    async def update_progress(self, task_id: int, progress: int, project_id: str) -> Task:
        """Record progress of an assigned task; 100 completes it.

        Raises:
            StateError: If the task has no assignee
        """
        project_id = require_project_id(project_id)
        task_id = require_task_id(task_id)
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError(
                f"Invalid progress: {progress}", {"field": "progress", "value": progress}
            )

        async with self.project_lock(project_id):
            await self.init(project_id)
            task = self._find(project_id, task_id)
            if not task.assigned_to:
                raise StateError(
                    f"Task with id {task_id} in project {project_id} is not assigned",
                    task_id,
                    task.status.value,
                    "update_progress",
                )

            if progress == 100:
                updated = self._mark_completed(project_id, task_id)
            else:
                updated = self._apply_update(project_id, task_id, {"progress": progress}).copy()
                self._commit(project_id)

            if updated.progress == 100:
                await self.events.emit(ProgressReached100(project_id=project_id, task=updated.copy()))
            return updated

    async def delete_task(
        self,
        task_id: int,
        project_id: str,
        reorganize: bool = True,
        cascade: bool = True,
    ) -> Task:
        """Delete a task, first deleting its subtasks when cascading.

        References to deleted ids are removed from every other task's subtasks and
        dependencies. With reorganize the remaining ids are renumbered 1..N.
        """
        project_id = require_project_id(project_id)
        task_id = require_task_id(task_id)

        async with self.project_lock(project_id):
            await self.init(project_id)
            deleted = self._delete(project_id, task_id, cascade, set())
            if reorganize:
                self._renumber(project_id)
            self._commit(project_id)
            logger.info(f"[TaskStore] Deleted task #{task_id} from {project_id}")
            return deleted.copy()

    async def delete_tasks(
        self, criteria: DeleteCriteria | Mapping[str, Any], project_id: str
    ) -> list[Task]:
        """Delete every task matching criteria, then renumber once if any were removed.

        Criteria precedence: explicit ids, status, duplicates (same title and
        description, first occurrence kept), unqualified (blank title or description).
        """
        project_id = require_project_id(project_id)
        selection = _validate(DeleteCriteria, criteria)
        if not (selection.ids or selection.status or selection.duplicates or selection.unqualified):
            raise ValidationError(
                "No deletion criteria provided", {"field": "criteria", "value": "missing"}
            )

        async with self.project_lock(project_id):
            await self.init(project_id)
            targets = self._select_for_deletion(project_id, selection)

            deleted: list[Task] = []
            for target_id in targets:
                try:
                    deleted.append(self._delete(project_id, target_id, True, set()))
                except TaskNotFoundError:
                    logger.debug(f"[TaskStore] Task #{target_id} already gone from {project_id}")

            if deleted:
                self._renumber(project_id)
                self._commit(project_id)
            logger.info(f"[TaskStore] Deleted {len(deleted)} tasks from {project_id}")
            return self._copies(deleted)

    async def reorganize_task_ids(self, project_id: str) -> dict[int, int]:
        """Renumber a project's tasks 1..N and return the old->new id map."""
        project_id = require_project_id(project_id)
        async with self.project_lock(project_id):
            await self.init(project_id)
            id_map = self._renumber(project_id)
            self._commit(project_id)
            return id_map

    # ---- internals ----

    @staticmethod
    def _cache_key(project_id: str) -> str:
        return f"tasks:{project_id}"

    @staticmethod
    def _write_key(project_id: str) -> str:
        return f"save:{project_id}"

    @staticmethod
    def _copies(tasks: list[Task]) -> list[Task]:
        return [task.copy() for task in tasks]

    async def _load(self, project_id: str) -> None:
        """Read a project's task file into memory, the index and the cache.

        A missing or unreadable file yields an empty list that is written back.

        Args:
            project_id: Validated project id

        Raises:
            FileSystemError: If the project directory cannot be accessed
        """
        needs_write = False
        file_path = str(self._file.path_for(project_id))
        try:
            await asyncio.to_thread(self._file.ensure_project, project_id)
            tasks = await asyncio.to_thread(self._file.read, project_id)
            mtime = await asyncio.to_thread(self._file.mtime_ns, project_id)
        except FileNotFoundError:
            tasks, mtime, needs_write = [], None, True
        except ValueError as e:
            logger.error(f"[TaskStore] Unreadable task file for {project_id}, starting empty: {e}")
            tasks, mtime, needs_write = [], None, True
        except OSError as e:
            raise FileSystemError(
                f"Failed to initialize tasks for project {project_id}", "init", file_path
            ) from e

        # Another caller finished loading while we were reading
        if project_id in self._tasks:
            return

        self._tasks[project_id] = tasks
        if mtime is not None:
            self._known_mtimes[project_id] = mtime
        self._rebuild_index(project_id)
        self._cache.set(self._cache_key(project_id), tasks)
        if needs_write:
            self.save_tasks(project_id)
        logger.info(f"[TaskStore] Loaded {len(tasks)} tasks for {project_id}")

    async def _write(self, project_id: str) -> int:
        """Write the project's current task list to its file.

        Args:
            project_id: Validated project id

        Returns:
            Number of tasks written

        Raises:
            FileSystemError: If the file cannot be written
        """
        # Serialize on the event loop so the latest in-memory state is what lands
        records = [task.to_dict() for task in self._tasks.get(project_id, [])]
        file_path = str(self._file.path_for(project_id))
        try:
            mtime = await asyncio.to_thread(self._file.write, project_id, records)
        except OSError as e:
            raise FileSystemError(
                f"Failed to save tasks for project {project_id}", "save", file_path
            ) from e
        self._known_mtimes[project_id] = mtime
        logger.debug(f"[TaskStore] Saved {len(records)} tasks for {project_id}")
        return len(records)

    def _commit(self, project_id: str) -> None:
        """Reindex after a mutation and schedule the write."""
        self._rebuild_index(project_id)
        self.save_tasks(project_id)

    def _rebuild_index(self, project_id: str) -> None:
        self._indices[project_id] = _TaskIndex.build(self._tasks[project_id])

    def _index(self, project_id: str) -> _TaskIndex:
        index = self._indices.get(project_id)
        if index is None:
            self._rebuild_index(project_id)
            index = self._indices[project_id]
        return index

    def _find(self, project_id: str, task_id: int) -> Task:
        """Live (not copied) task by id, via the index or a linear scan.

        Args:
            project_id: Loaded project id
            task_id: Task to look up

        Returns:
            The stored task object

        Raises:
            TaskNotFoundError: If no such task exists
        """
        index = self._indices.get(project_id)
        if index is not None and task_id in index.by_id:
            return index.by_id[task_id]
        for task in self._tasks.get(project_id, []):
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id, project_id)

    def _assigned(self, project_id: str, assignee: str) -> list[Task]:
        index = self._index(project_id)
        return [index.by_id[task_id].copy() for task_id in index.by_assignee.get(assignee, [])]

    def _apply_update(self, project_id: str, task_id: int, patch: dict[str, Any]) -> Task:
        """Set patch fields on the stored task without committing.

        Args:
            project_id: Loaded project id
            task_id: Task to change
            patch: Validated field values; naive datetimes are taken as UTC

        Returns:
            The stored task, with the subtask progress floor applied
        """
        task = self._find(project_id, task_id)
        for name, value in patch.items():
            if isinstance(value, list):
                value = list(value)
            elif isinstance(value, datetime) and value.tzinfo is None:
                value = value.replace(tzinfo=UTC)
            setattr(task, name, value)

        if "progress" in patch and self._subtasks_all_completed(project_id, task):
            task.progress = 100
        task.updated_at = utcnow()
        return task

    def _subtasks_all_completed(self, project_id: str, task: Task) -> bool:
        by_id = self._index(project_id).by_id
        subtasks = [by_id[sub_id] for sub_id in task.subtasks if sub_id in by_id]
        return bool(subtasks) and all(sub.status == TaskStatus.COMPLETED for sub in subtasks)

    def _mark_completed(self, project_id: str, task_id: int) -> Task:
        """Complete a task and commit. Returns a copy."""
        task = self._apply_update(
            project_id,
            task_id,
            {"status": TaskStatus.COMPLETED, "completed_at": utcnow(), "progress": 100},
        )
        self._commit(project_id)
        return task.copy()

    def _delete(self, project_id: str, task_id: int, cascade: bool, visited: set[int]) -> Task:
        """Remove a task and every reference to it, without committing.

        Args:
            project_id: Loaded project id
            task_id: Task to remove
            cascade: Remove listed subtasks first, recursively
            visited: Ids already removed in this call, guarding against cycles

        Returns:
            The removed task
        """
        task = self._find(project_id, task_id)
        visited.add(task_id)

        if cascade:
            for subtask_id in list(task.subtasks):
                if subtask_id in visited:
                    continue
                try:
                    self._delete(project_id, subtask_id, True, visited)
                except TaskNotFoundError:
                    logger.warning(
                        f"[TaskStore] Subtask #{subtask_id} of #{task_id} missing in {project_id}"
                    )

        tasks = self._tasks[project_id]
        tasks[:] = [other for other in tasks if other is not task]

        now = utcnow()
        for other in tasks:
            if task_id in other.subtasks or task_id in other.dependencies:
                other.subtasks = [ref for ref in other.subtasks if ref != task_id]
                other.dependencies = [ref for ref in other.dependencies if ref != task_id]
                other.updated_at = now

        self._rebuild_index(project_id)
        return task

    def _select_for_deletion(self, project_id: str, selection: DeleteCriteria) -> list[int]:
        """Ids matched by the first criterion set in selection."""
        tasks = self._tasks[project_id]
        if selection.ids:
            return list(dict.fromkeys(selection.ids))
        if selection.status:
            return [task.id for task in tasks if task.status == selection.status]
        if selection.duplicates:
            seen: set[tuple[str, str]] = set()
            duplicates = []
            for task in tasks:
                key = (task.title, task.description)
                if key in seen:
                    duplicates.append(task.id)
                else:
                    seen.add(key)
            return duplicates
        return [
            task.id for task in tasks if not task.title.strip() or not task.description.strip()
        ]

    def _renumber(self, project_id: str) -> dict[int, int]:
        """Renumber in place and reindex, without committing.

        Returns:
            Map of old id to new id for every task
        """
        tasks = self._tasks[project_id]
        ordered, id_map = renumber_tasks(tasks)
        tasks[:] = ordered
        self._rebuild_index(project_id)
        changed = {old: new for old, new in id_map.items() if old != new}
        if changed:
            logger.info(f"[TaskStore] Renumbered {len(changed)} task ids in {project_id}")
        return id_map
