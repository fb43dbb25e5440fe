"""cli-monitor FastAPI application: main entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cli_monitor import config
from cli_monitor.ingest.file_watcher import FileWatcher, WatchRootTimeoutError
from cli_monitor.ingest.sync_loop import SyncLoop
from cli_monitor.routers.sessions import sessions_router
from cli_monitor.store import SessionStore
from cli_monitor.observability import initialize as initialize_observability, shutdown as shutdown_observability

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cli_monitor")


async def _start_watcher(watcher: FileWatcher) -> None:
    try:
        await watcher.start()
    except WatchRootTimeoutError as e:
        logger.error(f"File watcher not started: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("cli-monitor starting up (watching %s)", config.WATCH_DIR)
    initialize_observability(app)

    store = SessionStore()
    watcher = FileWatcher(config.WATCH_DIR, store)
    sync = SyncLoop(store)
    app.state.session_store = store
    app.state.file_watcher = watcher
    app.state.sync_loop = sync

    await sync.start()
    # The root may not exist yet; waiting for it must not block startup.
    app.state.watcher_task = asyncio.create_task(_start_watcher(watcher))

    yield

    logger.info("cli-monitor shutting down")

    app.state.watcher_task.cancel()
    try:
        await app.state.watcher_task
    except asyncio.CancelledError:
        pass

    await watcher.stop()
    await sync.stop()
    shutdown_observability(app)


app = FastAPI(
    title="cli-monitor",
    description="Live view of Claude Code sessions tailed from transcript files",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(sessions_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    store = getattr(app.state, "session_store", None)
    watcher = getattr(app.state, "file_watcher", None)
    return {
        "status": "ok",
        "watcher": "running" if watcher is not None and watcher.is_running else "stopped",
        "sessions": store.session_count() if store is not None else 0,
        "pendingChanges": store.pending_change_count() if store is not None else 0,
    }


def run() -> None:
    import uvicorn

    uvicorn.run("cli_monitor.main:app", host=config.HOST, port=config.PORT)
