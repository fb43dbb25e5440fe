"""Periodic drain of the session store towards an external consumer."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from cli_monitor import config
from cli_monitor.models import ChangeBatch
from cli_monitor.store import SessionStore

logger = logging.getLogger("cli_monitor.sync")

SyncSink = Callable[[ChangeBatch], Awaitable[None]]


async def log_sink(batch: ChangeBatch) -> None:
    """Default sink: report the batch in the log and drop it."""
    logger.info(
        "Session changes: %d updated, %d removed",
        len(batch.updated),
        len(batch.removed),
    )


class SyncLoop:
    """Drain changed/removed sessions every flush interval.

    A failing sink gets its batch re-enqueued (bounded by the store's pending
    cap). Every idle-check interval, quiet sessions are marked idle and long
    idle ones evicted.
    """

    def __init__(
        self,
        store: SessionStore,
        sink: SyncSink = log_sink,
        *,
        flush_interval_ms: int = config.FLUSH_INTERVAL_MS,
        idle_check_interval_seconds: float = config.IDLE_CHECK_INTERVAL_SECONDS,
        idle_timeout_seconds: float = config.IDLE_TIMEOUT_SECONDS,
        idle_eviction_seconds: float = config.IDLE_EVICTION_SECONDS,
    ):
        self.store = store
        self.sink = sink
        self.flush_interval = max(1, flush_interval_ms) / 1000.0
        self.idle_check_interval = idle_check_interval_seconds
        self.idle_timeout = idle_timeout_seconds
        self.idle_eviction = idle_eviction_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            logger.warning("Sync loop already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Sync loop started (flush every %.0f ms)", self.flush_interval * 1000)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Sync loop stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def flush_once(self) -> bool:
        """Send pending changes to the sink. Returns False when delivery failed."""
        batch = self.store.flush_changes()
        if batch.is_empty:
            return True
        try:
            await self.sink(batch)
        except Exception as e:
            logger.error(f"Sync sink failed, re-enqueueing batch: {e}")
            self.store.mark_pending_retry(batch)
            return False
        return True

    def check_idle(self, now: datetime | None = None) -> tuple[int, int]:
        marked = self.store.mark_idle_sessions(self.idle_timeout, now)
        evicted = self.store.evict_idle_sessions(self.idle_eviction, now)
        if evicted > 0:
            logger.info("Evicted %d idle session(s)", evicted)
        return marked, evicted

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_idle_check = loop.time() + self.idle_check_interval
        while self._running:
            await asyncio.sleep(self.flush_interval)
            if loop.time() >= next_idle_check:
                next_idle_check = loop.time() + self.idle_check_interval
                self.check_idle()
            await self.flush_once()
