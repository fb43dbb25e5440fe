"""Transcript directory watcher using watchfiles.

Tails every ``*.jsonl`` file under a root directory, reading only the bytes
appended since the last pass and folding complete lines into the session
store. Notifications for the same path are debounced because writers append
in rapid small bursts.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional

from watchfiles import Change, DefaultFilter, awatch

from cli_monitor import config
from cli_monitor.date_utils import is_older_than, mtime_to_datetime
from cli_monitor.observability import record_ingestion, start_span
from cli_monitor.parsers.jsonl import parse_jsonl_chunk
from cli_monitor.store import SessionStore

logger = logging.getLogger("cli_monitor.watcher")

TRANSCRIPT_SUFFIX = ".jsonl"


class WatchRootTimeoutError(RuntimeError):
    """The watch root never appeared within the configured wait."""


class TranscriptFilter(DefaultFilter):
    """DefaultFilter that only lets transcript files through."""

    def __call__(self, change: Change, path: str) -> bool:
        return path.endswith(TRANSCRIPT_SUFFIX) and super().__call__(change, path)


def strip_continuation_bytes(data: bytes) -> tuple[bytes, int]:
    """Drop leading UTF-8 continuation bytes (``0b10xxxxxx``).

    A read that starts mid-character would otherwise decode to garbage.
    Returns the trimmed buffer and how many bytes were dropped.
    """
    skip = 0
    while skip < len(data) and (data[skip] & 0xC0) == 0x80:
        skip += 1
    return data[skip:], skip


class FileWatcher:
    """Background watcher that feeds transcript bytes to the session store.

    Uses `watchfiles` (Rust-accelerated) for efficient recursive watching.
    """

    def __init__(
        self,
        watch_dir: Path | str,
        store: SessionStore,
        *,
        debounce_ms: int = config.DEBOUNCE_MS,
        max_read_bytes: int = config.MAX_READ_BYTES,
        retention_days: int = config.RETENTION_DAYS,
        root_poll_interval: float = config.ROOT_POLL_INTERVAL_SECONDS,
        root_wait_timeout: float = config.ROOT_WAIT_TIMEOUT_SECONDS,
    ):
        self.watch_dir = Path(watch_dir).expanduser()
        self.store = store
        self.debounce_seconds = max(0, debounce_ms) / 1000.0
        self.max_read_bytes = max_read_bytes
        self.retention = timedelta(days=retention_days) if retention_days > 0 else None
        self.root_poll_interval = root_poll_interval
        self.root_wait_timeout = root_wait_timeout

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._inflight: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Wait for the root, scan existing transcripts, then watch for changes."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        try:
            await self._wait_for_root()
            await self.scan_existing()
        except BaseException:
            self._running = False
            raise

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(f"File watcher started for {self.watch_dir}")

    async def stop(self) -> None:
        """Stop the file watcher and cancel pending debounced work."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._running:
            logger.info("File watcher stopped")
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_paths(self) -> list[str]:
        return list(self._timers)

    async def _wait_for_root(self) -> None:
        if self.watch_dir.is_dir():
            return
        logger.info("Watch directory %s does not exist yet, waiting...", self.watch_dir)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.root_wait_timeout
        while not self.watch_dir.is_dir():
            if loop.time() >= deadline:
                raise WatchRootTimeoutError(
                    f"Watch directory {self.watch_dir} not found after {self.root_wait_timeout}s"
                )
            await asyncio.sleep(self.root_poll_interval)

    async def scan_existing(self) -> int:
        """Process every transcript already under the root. Returns files seen."""
        try:
            paths = sorted(p for p in self.watch_dir.rglob(f"*{TRANSCRIPT_SUFFIX}") if p.is_file())
        except OSError as e:
            logger.error(f"Error scanning existing files: {e}")
            return 0

        for path in paths:
            await self.process_file(path)
        logger.info(f"Initial scan processed {len(paths)} transcript file(s)")
        return len(paths)

    async def _watch_loop(self) -> None:
        """Main watching loop. Debounces every transcript change notification."""
        try:
            async for changes in awatch(
                self.watch_dir,
                watch_filter=TranscriptFilter(),
                stop_event=self._stop_event,
                recursive=True,
            ):
                for _change_type, path_str in changes:
                    self.schedule(path_str)
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error(f"File watcher error: {e}")
        finally:
            self._running = False

    def _key(self, file_path: Path | str) -> str:
        # Scan and change notifications may spell the same file differently.
        try:
            return str(Path(file_path).resolve())
        except (OSError, RuntimeError):
            # Symlink loop; the containment check rejects it later.
            return str(file_path)

    def schedule(self, file_path: Path | str) -> None:
        """Debounce processing of ``file_path``; repeated calls push it back."""
        key = self._key(file_path)
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.debounce_seconds, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        task = asyncio.create_task(self.process_file(key))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def process_file(self, file_path: Path | str) -> int:
        """Fold any new bytes of one transcript into the store.

        Returns the number of bytes consumed. Errors are contained to this
        file: a vanished file drops its sessions, an unreadable one is left
        for the next change notification.
        """
        key = self._key(file_path)
        async with self._lock:
            started = time.monotonic()
            with start_span("cli_monitor.process_file", {"file.path": key}):
                try:
                    result, consumed = await self._process_locked(key)
                except Exception as e:
                    logger.error(f"Error processing {key}: {e}")
                    result, consumed = "error", 0
            record_ingestion(result, (time.monotonic() - started) * 1000.0, bytes_consumed=consumed)
            return consumed

    async def _process_locked(self, key: str) -> tuple[str, int]:
        stored_offset = self.store.get_read_offset(key)
        try:
            window = await asyncio.to_thread(self._read_new_bytes, key, stored_offset)
        except FileNotFoundError:
            self.store.remove_by_file_path(key)
            return "missing", 0
        except PermissionError as e:
            logger.warning("Permission denied reading %s, will retry on next change: %s", key, e)
            return "denied", 0
        except OSError as e:
            logger.error(f"Error reading {key}: {e}")
            return "error", 0

        if window is None:
            return "skipped", 0

        start, data = window
        watch_root = str(self.watch_dir.resolve())
        consumed = parse_jsonl_chunk(key, data, start, self.store, watch_root)
        self.store.set_read_offset(key, start + consumed)
        if consumed > 0:
            self.store.touch_file(key)
        return "ok", consumed

    def _is_within_root(self, path: Path) -> bool:
        real_root = self.watch_dir.resolve(strict=True)
        real_path = path.resolve(strict=True)
        return real_path == real_root or real_path.is_relative_to(real_root)

    def _read_new_bytes(self, key: str, stored_offset: int) -> Optional[tuple[int, bytes]]:
        """Read the unread tail of a transcript.

        Returns ``(start_offset, data)`` or None when there is nothing to do.
        Runs in a worker thread; touches no shared state.
        """
        path = Path(key)
        if not self._is_within_root(path):
            logger.warning("Skipping file outside watch directory (symlink resolved): %s", key)
            return None

        stat = path.stat()
        if self.retention is not None and is_older_than(mtime_to_datetime(stat.st_mtime), self.retention):
            logger.debug("Skipping %s: not modified within retention window", key)
            return None

        size = stat.st_size
        offset = stored_offset
        if offset > size:
            logger.info("File %s shrank below stored offset %d, re-reading from start", key, offset)
            offset = 0
        if size <= offset:
            return None

        start = offset
        pending = size - offset
        if pending > self.max_read_bytes:
            start = size - self.max_read_bytes
            logger.warning(
                "File %s has %d unread bytes, reading only the last %d",
                key,
                pending,
                self.max_read_bytes,
            )

        with path.open("rb") as fh:
            fh.seek(start)
            data = fh.read(size - start)

        data, skipped = strip_continuation_bytes(data)
        return start + skipped, data
