"""Sequential renumbering of task ids."""

from task_keeper.store.models import Task


def renumber_tasks(tasks: list[Task]) -> tuple[list[Task], dict[int, int]]:
    """Assign ids 1..N in ascending order of current id and rewrite references.

    Tasks are modified in place. ``dependencies`` and ``subtasks`` entries are mapped
    through the old->new table; ids without a mapping pass through unchanged. When
    two tasks share an old id, references to it resolve to the first of them.

    Returns:
        The tasks in their new order and the old->new id map
    """
    ordered = sorted(tasks, key=lambda task: task.id)

    id_map: dict[int, int] = {}
    for position, task in enumerate(ordered):
        id_map.setdefault(task.id, position + 1)

    for position, task in enumerate(ordered):
        task.id = position + 1
        task.dependencies = [id_map.get(ref, ref) for ref in task.dependencies]
        task.subtasks = [id_map.get(ref, ref) for ref in task.subtasks]

    return ordered, id_map
