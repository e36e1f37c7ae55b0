"""File system watcher for project task files."""

import logging
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from task_keeper.validation import TASKS_FILENAME, is_valid_project_id

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, str], None]


class TaskWatcher:
    """Watches the tasks directory and reports changed project task files."""

    def __init__(self, tasks_dir: Path):
        """Initialize watcher.

        Args:
            tasks_dir: Root directory holding one sub-directory per project
        """
        self.tasks_dir = tasks_dir
        self._observer: BaseObserver | None = None
        self._callback: ChangeCallback | None = None

    def set_callback(self, callback: ChangeCallback) -> None:
        """Set callback for task file events.

        Args:
            callback: Function(event_type, project_id) called from the observer thread
        """
        self._callback = callback

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        """Start watching in the observer's background thread."""
        self.tasks_dir.mkdir(parents=True, exist_ok=True)
        handler = _TaskFileEventHandler(self.tasks_dir, self._callback)
        self._observer = Observer()
        self._observer.daemon = True
        self._observer.schedule(handler, str(self.tasks_dir), recursive=True)
        logger.info(f"[TaskWatcher] Watching {self.tasks_dir}")
        self._observer.start()

    def stop(self) -> None:
        """Stop watching and clean up resources."""
        if self._observer:
            logger.info(f"[TaskWatcher] Stopping watcher for {self.tasks_dir}")
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None


class _TaskFileEventHandler(FileSystemEventHandler):
    """Maps file events on ``<tasks_dir>/<project>/tasks.yaml`` to project ids."""

    def __init__(self, tasks_dir: Path, callback: ChangeCallback | None):
        self.tasks_dir = tasks_dir.resolve()
        self.callback = callback

    def _extract_project_id(self, file_path: str) -> str | None:
        """Project id for a task file path, or None for any other file."""
        path = Path(file_path)
        if path.name != TASKS_FILENAME:
            return None
        try:
            relative = path.resolve().relative_to(self.tasks_dir)
        except ValueError:
            return None
        if len(relative.parts) != 2 or not is_valid_project_id(relative.parts[0]):
            return None
        return relative.parts[0]

    def _handle_event(self, event_type: str, src_path: str | bytes) -> None:
        if isinstance(src_path, bytes):
            src_path = src_path.decode("utf-8")

        project_id = self._extract_project_id(src_path)
        if not project_id:
            return

        logger.debug(f"[TaskWatcher] {event_type}: {project_id}")
        if self.callback:
            try:
                self.callback(event_type, project_id)
            except Exception as e:
                logger.error(f"[TaskWatcher] Callback error: {e}", exc_info=True)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_event("modified", event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_event("created", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_event("deleted", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic saves replace the task file via rename
        if not event.is_directory:
            self._handle_event("moved", getattr(event, "dest_path", "") or event.src_path)
