"""Maintenance engine: rule-driven repair passes over a project's tasks.

A pass runs these stages in order, each one toggleable per project:

1. metadata consistency (completion timestamps, status/progress agreement, assignment timestamps)
2. orphaned subtask resolution (reassign, convert or delete)
3. quality enforcement (flag, fix or delete short or unprioritized tasks)
4. duplicate detection and merge
5. id renumbering, only when an earlier stage changed the task set

Every mutation goes through the TaskStore. Failures on one task or cluster are
logged and skipped; a pass always returns the actions that succeeded.
"""

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from task_keeper.errors import TaskNotFoundError
from task_keeper.events import ProgressReached100, TaskCompleted, TaskEvent
from task_keeper.maintenance.config import (
    DuplicateDetectionConfig,
    MaintenanceConfig,
    MaintenanceSettings,
    MetadataConsistencyConfig,
    OrphanedSubtasksConfig,
    QualityConfig,
)
from task_keeper.maintenance.similarity import (
    LexicalSimilarityScorer,
    SimilarityScorer,
    normalize_text,
)
from task_keeper.store.models import Task, TaskPriority, TaskStatus, utcnow
from task_keeper.store.task_store import TaskStore
from task_keeper.validation import require_project_id

logger = logging.getLogger(__name__)

TITLE_FILLER = " (expanded)"
DESCRIPTION_FILLER = " (This description was automatically expanded to meet quality standards)"
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000

# Action types that only report and leave the task set untouched
_REPORT_ONLY = {"quality_flag"}


@dataclass(frozen=True)
class CleanupAction:
    """One change (or finding) made by a maintenance pass."""

    type: str
    description: str
    task_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def format_actions(actions: list[CleanupAction]) -> str:
    """Render actions as text sections grouped by action type."""
    if not actions:
        return "No cleanup actions were performed."

    sections: dict[str, list[str]] = {}
    for action in actions:
        sections.setdefault(action.type or "other", []).append(action.description)

    blocks = []
    for action_type, descriptions in sections.items():
        heading = action_type.replace("_", " ").title()
        lines = "\n".join(f"- {description}" for description in descriptions)
        blocks.append(f"{heading}:\n{lines}")
    return "\n\n".join(blocks)


def _pad(text: str, filler: str, min_length: int, max_length: int) -> str:
    """Append filler until text reaches min_length.

    Args:
        text: Starting text
        filler: Suffix repeated as needed
        min_length: Length to reach
        max_length: Field limit the result is truncated to

    Returns:
        Padded text
    """
    while len(text) < min_length:
        text += filler
    return text[:max_length]


def _subtasks_all_completed(task: Task, by_id: Mapping[int, Task]) -> bool:
    subtasks = [by_id[sub_id] for sub_id in task.subtasks if sub_id in by_id]
    return bool(subtasks) and all(sub.status == TaskStatus.COMPLETED for sub in subtasks)


class MaintenanceEngine:
    """Runs maintenance passes, on demand or after task completion events."""

    def __init__(
        self,
        store: TaskStore,
        settings: MaintenanceSettings | None = None,
        lexical: SimilarityScorer | None = None,
        oracle: SimilarityScorer | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            store: Store used for every read and mutation
            settings: Maintenance defaults and per-project overrides
            lexical: Local similarity scorer
            oracle: Remote similarity scorer, used when configured and available
        """
        self.store = store
        self.settings = settings or MaintenanceSettings()
        self._lexical = lexical or LexicalSimilarityScorer()
        self._oracle = oracle
        self._flagged: dict[str, set[tuple[Any, ...]]] = {}

    def register_hooks(self) -> None:
        """Subscribe to the store's completion events. Calling again is a no-op."""
        self.store.events.subscribe(TaskCompleted, self._on_task_event)
        self.store.events.subscribe(ProgressReached100, self._on_task_event)

    async def _on_task_event(self, event: TaskEvent) -> None:
        """Run a pass for the event's project when triggers allow it.

        Args:
            event: Completion or progress event from the store
        """
        config = self.settings.for_project(event.project_id)
        if not config.enabled or not config.triggers.on_task_completion:
            return
        if event.task.progress < config.triggers.completion_threshold:
            return

        logger.info(
            f"[Maintenance] Task #{event.task.id} reached {event.task.progress}% "
            f"in {event.project_id}, running cleanup"
        )
        try:
            await self.perform_cleanup(event.project_id)
        except Exception as e:
            logger.error(
                f"[Maintenance] Cleanup after task #{event.task.id} in {event.project_id} failed: {e}",
                exc_info=True,
            )

    async def perform_cleanup(
        self, project_id: str, operations: Mapping[str, bool] | None = None
    ) -> list[CleanupAction]:
        """Run one maintenance pass over a project.

        Args:
            project_id: Project to clean up
            operations: Stage toggles (metadata, orphans, quality, duplicates, renumber)
                applied on top of the project configuration for this pass only

        Returns:
            Actions performed, in order; empty when nothing needed fixing
        """
        project_id = require_project_id(project_id)
        config = self.settings.for_project(project_id)
        if operations:
            config = config.with_stages(operations)
        if not config.enabled:
            logger.debug(f"[Maintenance] Disabled for {project_id}")
            return []

        actions: list[CleanupAction] = []
        async with self.store.project_lock(project_id):
            await self.store.init(project_id)
            stages = config.operations

            if stages.metadata_consistency.enabled:
                await self._run_stage(
                    "metadata", self._fix_metadata(project_id, stages.metadata_consistency, actions)
                )
            if stages.orphaned_subtasks.enabled:
                await self._run_stage(
                    "orphans", self._resolve_orphans(project_id, stages.orphaned_subtasks, actions)
                )
            if stages.quality.enabled:
                await self._run_stage(
                    "quality", self._enforce_quality(project_id, stages.quality, actions)
                )
            if stages.duplicate_detection.enabled:
                await self._run_stage(
                    "duplicates",
                    self._merge_duplicates(project_id, stages.duplicate_detection, actions),
                )
            if stages.renumber.enabled:
                await self._run_stage("renumber", self._renumber(project_id, config, actions))

        self._log_actions(project_id, config, actions)
        return actions

    async def _run_stage(self, name: str, stage: Any) -> None:
        """Await a stage coroutine, logging instead of raising if it aborts."""
        try:
            await stage
        except Exception as e:
            logger.error(f"[Maintenance] Stage {name} aborted: {e}", exc_info=True)

    # ---- stages ----

    async def _fix_metadata(
        self, project_id: str, config: MetadataConsistencyConfig, actions: list[CleanupAction]
    ) -> None:
        """Bring completion and assignment fields in line with status.

        Args:
            project_id: Project being cleaned up
            config: Metadata stage settings
            actions: Action list to append to
        """
        tasks = await self.store.list_tasks(project_id)
        by_id = {task.id: task for task in reversed(tasks)}

        for task in tasks:
            try:
                patch: dict[str, Any] = {}
                fixes: list[str] = []
                completed = task.status == TaskStatus.COMPLETED

                if config.ensure_completed_timestamp and completed and task.completed_at is None:
                    patch["completed_at"] = task.updated_at or utcnow()
                    fixes.append("set completion timestamp")

                if config.validate_status_progress:
                    if completed and task.progress != 100:
                        patch["progress"] = 100
                        fixes.append(f"progress {task.progress}% -> 100%")
                    elif (
                        task.status == TaskStatus.PENDING
                        and task.progress != 0
                        and not _subtasks_all_completed(task, by_id)
                    ):
                        # A task whose subtasks are all done is held at 100% by the store
                        patch["progress"] = 0
                        fixes.append(f"progress {task.progress}% -> 0%")

                if config.validate_assigned_fields and task.assigned_to and task.assigned_at is None:
                    patch["assigned_at"] = utcnow()
                    fixes.append("set assignment timestamp")

                if patch:
                    await self.store.update_task(task.id, patch, project_id)
                    actions.append(
                        CleanupAction(
                            "metadata_fix",
                            f"Task #{task.id} \"{task.title}\": {', '.join(fixes)}",
                            task.id,
                        )
                    )
            except Exception as e:
                logger.error(
                    f"[Maintenance] Metadata fix failed for task #{task.id} in {project_id}: {e}",
                    exc_info=True,
                )

    async def _resolve_orphans(
        self, project_id: str, config: OrphanedSubtasksConfig, actions: list[CleanupAction]
    ) -> None:
        """Reassign, convert or delete subtasks no top-level task lists.

        Args:
            project_id: Project being cleaned up
            config: Orphan stage settings
            actions: Action list to append to
        """
        tasks = await self.store.list_tasks(project_id)
        listed = {sub_id for task in tasks if not task.is_subtask for sub_id in task.subtasks}
        orphans = [task for task in tasks if task.is_subtask and task.id not in listed]

        for orphan in orphans:
            try:
                if config.action == "delete":
                    await self.store.delete_task(orphan.id, project_id, reorganize=False)
                    actions.append(
                        CleanupAction(
                            "orphan_delete",
                            f"Deleted orphaned subtask #{orphan.id} \"{orphan.title}\"",
                            orphan.id,
                        )
                    )
                    continue

                parent = None
                if config.action == "reassign":
                    parent = self._choose_parent(
                        await self.store.list_tasks(project_id), config.reassign_to_task_id
                    )

                if parent is None:
                    await self.store.update_task(orphan.id, {"is_subtask": False}, project_id)
                    actions.append(
                        CleanupAction(
                            "orphan_convert",
                            f"Converted orphaned subtask #{orphan.id} \"{orphan.title}\" "
                            f"to a top-level task",
                            orphan.id,
                        )
                    )
                    continue

                await self.store.update_task(
                    parent.id, {"subtasks": [*parent.subtasks, orphan.id]}, project_id
                )
                actions.append(
                    CleanupAction(
                        "orphan_reassign",
                        f"Reassigned orphaned subtask #{orphan.id} \"{orphan.title}\" "
                        f"to task #{parent.id} \"{parent.title}\"",
                        orphan.id,
                    )
                )
            except TaskNotFoundError:
                logger.debug(f"[Maintenance] Orphan #{orphan.id} already removed from {project_id}")
            except Exception as e:
                logger.error(
                    f"[Maintenance] Orphan resolution failed for task #{orphan.id} "
                    f"in {project_id}: {e}",
                    exc_info=True,
                )

    @staticmethod
    def _choose_parent(tasks: list[Task], preferred_id: int | None) -> Task | None:
        """Pick the top-level task an orphan is moved under.

        Args:
            tasks: Current project tasks
            preferred_id: Configured parent, used when it is a top-level task

        Returns:
            Preferred parent, else first open top-level task, else first
            top-level task, else None
        """
        top_level = [task for task in tasks if not task.is_subtask]
        if preferred_id is not None:
            for task in top_level:
                if task.id == preferred_id:
                    return task
        for task in top_level:
            if task.status != TaskStatus.COMPLETED:
                return task
        return top_level[0] if top_level else None

    async def _enforce_quality(
        self, project_id: str, config: QualityConfig, actions: list[CleanupAction]
    ) -> None:
        """Flag, fix or delete tasks with short text or no priority.

        Flags are reported once per task content for the life of the engine.
        """
        tasks = await self.store.list_tasks(project_id)
        flagged = self._flagged.setdefault(project_id, set())

        for task in tasks:
            try:
                title_short = len(task.title.strip()) < config.min_title_length
                description_short = len(task.description.strip()) < config.min_description_length
                priority_missing = config.require_priority and task.priority is None

                issues = []
                if title_short:
                    issues.append(f"title shorter than {config.min_title_length} characters")
                if description_short:
                    issues.append(
                        f"description shorter than {config.min_description_length} characters"
                    )
                if priority_missing:
                    issues.append("no priority")
                if not issues:
                    continue

                if config.action == "delete":
                    await self.store.delete_task(task.id, project_id, reorganize=False)
                    actions.append(
                        CleanupAction(
                            "quality_delete",
                            f"Deleted task #{task.id} \"{task.title}\": {'; '.join(issues)}",
                            task.id,
                        )
                    )
                elif config.action == "fix":
                    patch: dict[str, Any] = {}
                    if title_short:
                        patch["title"] = _pad(
                            task.title.strip() or f"Task {task.id}",
                            TITLE_FILLER,
                            config.min_title_length,
                            MAX_TITLE_LENGTH,
                        )
                    if description_short:
                        patch["description"] = _pad(
                            task.description.strip()
                            or f"Task {task.id} created at {task.created_at:%Y-%m-%d %H:%M}",
                            DESCRIPTION_FILLER,
                            config.min_description_length,
                            MAX_DESCRIPTION_LENGTH,
                        )
                    if priority_missing:
                        patch["priority"] = TaskPriority.MEDIUM
                    await self.store.update_task(task.id, patch, project_id)
                    actions.append(
                        CleanupAction(
                            "quality_fix",
                            f"Fixed task #{task.id} \"{task.title}\": {'; '.join(issues)}",
                            task.id,
                        )
                    )
                else:
                    key = (task.created_at, task.title, task.description, tuple(issues))
                    if key in flagged:
                        continue
                    flagged.add(key)
                    actions.append(
                        CleanupAction(
                            "quality_flag",
                            f"Task #{task.id} \"{task.title}\": {'; '.join(issues)}",
                            task.id,
                        )
                    )
            except TaskNotFoundError:
                logger.debug(f"[Maintenance] Task #{task.id} already removed from {project_id}")
            except Exception as e:
                logger.error(
                    f"[Maintenance] Quality check failed for task #{task.id} in {project_id}: {e}",
                    exc_info=True,
                )

    async def _merge_duplicates(
        self, project_id: str, config: DuplicateDetectionConfig, actions: list[CleanupAction]
    ) -> None:
        """Merge each duplicate cluster into its earliest-created member.

        Subtasks of deleted members move to the survivor. A survivor that was a
        subtask of a deleted member becomes top-level.

        Args:
            project_id: Project being cleaned up
            config: Duplicate stage settings
            actions: Action list to append to
        """
        tasks = (await self.store.list_tasks(project_id))[: config.max_tasks_to_compare]
        if len(tasks) < 2:
            return

        clusters = await self.find_duplicate_clusters(tasks, config)
        for cluster in clusters:
            members = sorted(cluster, key=lambda task: task.created_at)
            survivor_id = members[0].id
            try:
                owner_removed = False
                for duplicate in members[1:]:
                    survivor = await self.store.get_task(survivor_id, project_id)
                    current = await self.store.get_task(duplicate.id, project_id)
                    owner_removed = owner_removed or survivor_id in current.subtasks
                    transfer = [
                        sub_id
                        for sub_id in current.subtasks
                        if sub_id != survivor_id and sub_id not in survivor.subtasks
                    ]
                    if transfer:
                        await self.store.update_task(
                            survivor_id, {"subtasks": [*survivor.subtasks, *transfer]}, project_id
                        )
                        actions.append(
                            CleanupAction(
                                "duplicate_subtask_transfer",
                                f"Moved subtasks {transfer} from task #{duplicate.id} "
                                f"to task #{survivor_id}",
                                duplicate.id,
                            )
                        )

                    await self.store.delete_task(
                        duplicate.id, project_id, reorganize=False, cascade=False
                    )
                    actions.append(
                        CleanupAction(
                            "duplicate_delete",
                            f"Deleted task #{duplicate.id} \"{duplicate.title}\" "
                            f"(duplicate of #{survivor_id} \"{members[0].title}\")",
                            duplicate.id,
                        )
                    )

                if owner_removed:
                    await self._promote_if_unowned(survivor_id, project_id, actions)
            except Exception as e:
                logger.error(
                    f"[Maintenance] Duplicate merge into task #{survivor_id} in {project_id} "
                    f"failed: {e}",
                    exc_info=True,
                )

    async def _promote_if_unowned(
        self, task_id: int, project_id: str, actions: list[CleanupAction]
    ) -> None:
        """Make a subtask top-level when the duplicate that owned it was deleted.

        Args:
            task_id: Surviving task of a merged cluster
            project_id: Project being cleaned up
            actions: Action list to append to
        """
        task = await self.store.get_task(task_id, project_id)
        if not task.is_subtask or await self.store.get_parent_id(task_id, project_id) is not None:
            return
        await self.store.update_task(task_id, {"is_subtask": False}, project_id)
        actions.append(
            CleanupAction(
                "duplicate_promote",
                f"Task #{task_id} \"{task.title}\" lost its parent in a merge and is now "
                f"a top-level task",
                task_id,
            )
        )

    async def find_duplicate_clusters(
        self, tasks: list[Task], config: DuplicateDetectionConfig
    ) -> list[list[Task]]:
        """Greedy single-pass clustering of tasks whose similarity reaches the threshold.

        Each unclustered task, in order, starts a cluster and absorbs every later
        unclustered task scoring at least the threshold against it. Only clusters
        with more than one task are returned.
        """
        texts = [
            normalize_text(self._task_text(task, config), config.ignore_case, config.ignore_whitespace)
            for task in tasks
        ]
        scorer = self._oracle if config.use_oracle and self._oracle is not None else self._lexical
        scores = await scorer.score(texts, config.similarity_threshold)

        clustered: set[int] = set()
        clusters: list[list[Task]] = []
        for i in range(len(tasks)):
            if i in clustered:
                continue
            clustered.add(i)
            members = [i]
            for j in range(i + 1, len(tasks)):
                if j not in clustered and scores[i][j] >= config.similarity_threshold:
                    members.append(j)
                    clustered.add(j)
            if len(members) > 1:
                clusters.append([tasks[index] for index in members])
        return clusters

    @staticmethod
    def _task_text(task: Task, config: DuplicateDetectionConfig) -> str:
        """Title and/or description text compared for similarity."""
        parts = []
        if config.consider_title and task.title:
            parts.append(task.title)
        if config.consider_description and task.description:
            parts.append(task.description)
        return " ".join(parts)

    async def _renumber(
        self, project_id: str, config: MaintenanceConfig, actions: list[CleanupAction]
    ) -> None:
        """Renumber ids when an earlier stage changed the task set.

        Args:
            project_id: Project being cleaned up
            config: Effective configuration for this pass
            actions: Actions so far; also appended to
        """
        if config.operations.renumber.only_after_deletion:
            needed = any(action.type.endswith("_delete") for action in actions)
        else:
            needed = any(action.type not in _REPORT_ONLY for action in actions)
        if not needed:
            return

        id_map = await self.store.reorganize_task_ids(project_id)
        changed = {old: new for old, new in id_map.items() if old != new}
        if changed:
            actions.append(
                CleanupAction(
                    "reorganize_ids",
                    f"Renumbered {len(changed)} tasks: "
                    + ", ".join(f"#{old} -> #{new}" for old, new in changed.items()),
                )
            )

    def _log_actions(
        self, project_id: str, config: MaintenanceConfig, actions: list[CleanupAction]
    ) -> None:
        """Log the pass summary, and each action when detailed logging is on."""
        if not config.logging.log_actions:
            return
        logger.info(f"[Maintenance] Cleanup of {project_id} performed {len(actions)} actions")
        if config.logging.detailed:
            for action in actions:
                logger.info(f"[Maintenance] {action.type}: {action.description}")
