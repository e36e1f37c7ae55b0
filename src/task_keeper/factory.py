"""Dependency injection factory."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from task_keeper.cache import TTLCache
from task_keeper.config import Settings
from task_keeper.maintenance.config import load_maintenance_settings
from task_keeper.maintenance.engine import MaintenanceEngine
from task_keeper.maintenance.similarity import (
    LexicalSimilarityScorer,
    OracleSimilarityScorer,
    SimilarityScorer,
)
from task_keeper.store.task_file import TaskFile
from task_keeper.store.task_store import TaskStore
from task_keeper.store.task_watcher import TaskWatcher
from task_keeper.write_coalescer import WriteCoalescer

logger = logging.getLogger(__name__)

# Process-wide singletons shared by all projects
_settings: Settings | None = None
_task_cache: TTLCache | None = None
_write_coalescer: WriteCoalescer | None = None
_task_store: TaskStore | None = None
_maintenance_engine: MaintenanceEngine | None = None
_watcher: TaskWatcher | None = None


def get_settings() -> Settings:
    """Get or create Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_task_cache() -> TTLCache:
    """Get or create the shared task-list cache."""
    global _task_cache
    if _task_cache is None:
        settings = get_settings()
        _task_cache = TTLCache(ttl=settings.cache_ttl, max_size=settings.cache_max_size)
    return _task_cache


def get_write_coalescer() -> WriteCoalescer:
    """Get or create the shared write coalescer."""
    global _write_coalescer
    if _write_coalescer is None:
        _write_coalescer = WriteCoalescer(delay=get_settings().save_delay)
    return _write_coalescer


def get_task_store() -> TaskStore:
    """Get or create TaskStore singleton."""
    global _task_store
    if _task_store is None:
        settings = get_settings()
        _task_store = TaskStore(
            TaskFile(settings.tasks_dir),
            get_task_cache(),
            get_write_coalescer(),
            agent_name=settings.agent_name,
        )
    return _task_store


def create_similarity_oracle() -> SimilarityScorer | None:
    """Remote similarity scorer, or None when no oracle API key is configured."""
    settings = get_settings()
    if not settings.oracle_api_key:
        return None
    return OracleSimilarityScorer(
        settings.oracle_endpoint,
        settings.oracle_api_key,
        timeout=settings.oracle_timeout,
        fallback=LexicalSimilarityScorer(),
    )


def get_maintenance_engine() -> MaintenanceEngine:
    """Get or create MaintenanceEngine singleton, hooked into the store."""
    global _maintenance_engine
    if _maintenance_engine is None:
        settings = get_settings()
        _maintenance_engine = MaintenanceEngine(
            get_task_store(),
            load_maintenance_settings(settings.maintenance_config),
            lexical=LexicalSimilarityScorer(),
            oracle=create_similarity_oracle(),
        )
        _maintenance_engine.register_hooks()
    return _maintenance_engine


def start_task_watcher() -> None:
    """Start the task file watcher, reloading projects changed outside this process."""
    global _watcher
    if _watcher is not None:
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.error("[Factory] No running event loop found")
        return

    settings = get_settings()
    store = get_task_store()

    def make_callback() -> Callable[[str, str], None]:
        def callback(event_type: str, project_id: str) -> None:
            future = asyncio.run_coroutine_threadsafe(store.reload_if_changed(project_id), loop)
            future.add_done_callback(lambda f: _log_reload_failure(f, project_id))

        return callback

    try:
        watcher = TaskWatcher(settings.tasks_dir)
        watcher.set_callback(make_callback())
        watcher.start()
        _watcher = watcher
    except Exception as e:
        logger.error(f"[Factory] Failed to start watcher for {settings.tasks_dir}: {e}", exc_info=True)


def _log_reload_failure(future: "asyncio.Future[bool]", project_id: str) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"[Factory] Reload of {project_id} after file change failed: {error}")


def stop_task_watcher() -> None:
    """Stop the running file watcher."""
    global _watcher
    if _watcher is None:
        return
    try:
        _watcher.stop()
    except Exception as e:
        logger.error(f"[Factory] Failed to stop watcher: {e}")
    _watcher = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle - startup and shutdown."""
    settings = get_settings()
    get_maintenance_engine()

    if settings.watch_files:
        logger.info("[Lifespan] Starting task watcher...")
        start_task_watcher()
    try:
        yield
    finally:
        logger.info("[Lifespan] Stopping task watcher...")
        stop_task_watcher()
        logger.info("[Lifespan] Flushing pending task writes...")
        try:
            await get_task_store().close()
        except Exception as e:
            logger.error(f"[Lifespan] Failed to flush task writes: {e}", exc_info=True)


def create_app() -> FastAPI:
    """Create FastAPI application (composition root)."""
    from task_keeper.api.tasks import router as tasks_router

    app = FastAPI(
        title="TaskKeeper",
        description="Hierarchical per-project task store with automatic maintenance",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(tasks_router, prefix="/api")
    return app
