"""Store mutation events and their subscribers."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from task_keeper.store.models import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCompleted:
    """A task was explicitly completed."""

    project_id: str
    task: Task


@dataclass(frozen=True)
class ProgressReached100:
    """A progress update left a task at 100%."""

    project_id: str
    task: Task


TaskEvent = TaskCompleted | ProgressReached100
EventHandler = Callable[[TaskEvent], Awaitable[None]]


class EventBus:
    """Delivers store events to subscribers in subscription order."""

    def __init__(self) -> None:
        """Initialize bus with no subscribers."""
        self._handlers: dict[type, list[EventHandler]] = {}

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        """Register handler for event_type; registering the same handler twice is a no-op."""
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def handlers(self, event_type: type) -> list[EventHandler]:
        """Handlers currently subscribed to event_type."""
        return list(self._handlers.get(event_type, []))

    async def emit(self, event: TaskEvent) -> None:
        """Await each handler in turn. Handler failures are logged, never raised."""
        for handler in self._handlers.get(type(event), []):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"[EventBus] Handler failed for {type(event).__name__} "
                    f"in project {event.project_id}: {e}",
                    exc_info=True,
                )
