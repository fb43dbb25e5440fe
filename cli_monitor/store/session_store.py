"""In-memory registry of live session state and per-file read offsets."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from cli_monitor import config
from cli_monitor.date_utils import is_older_than, utc_now
from cli_monitor.models import ChangeBatch, SessionRecord
from cli_monitor.store.outbox import ChangeOutbox

logger = logging.getLogger("cli_monitor.store")


def _as_window(value: timedelta | float) -> timedelta:
    return value if isinstance(value, timedelta) else timedelta(seconds=float(value))


class SessionStore:
    """Session records keyed by session id.

    Every mutation is recorded in a ChangeOutbox so an external sync loop can
    drain changed/removed ids with ``flush_changes``. The store holds at most
    ``max_sessions`` records; inserting past the cap evicts the record with
    the oldest ``lastActivityAt``.
    """

    def __init__(
        self,
        max_sessions: int = config.MAX_SESSIONS,
        max_pending_changes: int = config.MAX_PENDING_CHANGES,
    ):
        self.max_sessions = max_sessions
        self._sessions: dict[str, SessionRecord] = {}
        self._offsets: dict[str, int] = {}
        self._outbox = ChangeOutbox(max_pending=max_pending_changes)

    # ── Sessions ────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    def set_session(self, session_id: str, session: SessionRecord) -> None:
        self._sessions[session_id] = session
        self._outbox.mark_changed(session_id)
        if len(self._sessions) > self.max_sessions:
            self._evict_oldest()

    def remove_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._outbox.mark_removed(session_id)
        return True

    def remove_by_file_path(self, file_path: str) -> int:
        """Drop every session read from ``file_path`` along with its offset."""
        doomed = [sid for sid, s in self._sessions.items() if s.filePath == file_path]
        for session_id in doomed:
            self.remove_session(session_id)
        self._offsets.pop(file_path, None)
        if doomed:
            logger.info("Removed %d session(s) for vanished file %s", len(doomed), file_path)
        return len(doomed)

    def sessions_for_file(self, file_path: str) -> list[SessionRecord]:
        return [s for s in self._sessions.values() if s.filePath == file_path]

    def list_sessions(self) -> list[SessionRecord]:
        return list(self._sessions.values())

    def session_count(self) -> int:
        return len(self._sessions)

    def touch_file(self, file_path: str, now: datetime | None = None) -> int:
        """Mark sessions of a file as active right now.

        Called whenever new bytes are read so that a session whose events
        carry stale timestamps is not swept as idle while still being written.
        """
        touched_at = now or utc_now()
        touched = 0
        for session in self.sessions_for_file(file_path):
            session.lastActivityAt = touched_at
            self._outbox.mark_changed(session.sessionId)
            touched += 1
        return touched

    # ── Read offsets ────────────────────────────────────────────────

    def get_read_offset(self, file_path: str) -> int:
        return self._offsets.get(file_path, 0)

    def set_read_offset(self, file_path: str, offset: int) -> None:
        self._offsets[file_path] = max(0, int(offset))

    def clear_read_offset(self, file_path: str) -> None:
        self._offsets.pop(file_path, None)

    # ── Sync outbox ─────────────────────────────────────────────────

    def flush_changes(self) -> ChangeBatch:
        """Return deep copies of changed sessions and removed ids, then reset."""
        changed, removed = self._outbox.drain()
        updated = [
            self._sessions[session_id].model_copy(deep=True)
            for session_id in changed
            if session_id in self._sessions
        ]
        return ChangeBatch(updated=updated, removed=removed)

    def mark_pending_retry(self, batch: ChangeBatch) -> int:
        """Re-enqueue a batch whose delivery failed.

        Sessions removed since the flush are not re-sent as updates, and ids
        that reappeared are not re-sent as removals; the newer state is
        already pending. Returns the number of ids dropped by the outbox cap.
        """
        changed = [s.sessionId for s in batch.updated if s.sessionId in self._sessions]
        removed = [sid for sid in batch.removed if sid not in self._sessions]
        return self._outbox.requeue(changed, removed)

    def pending_change_count(self) -> int:
        return len(self._outbox)

    # ── Eviction ────────────────────────────────────────────────────

    def mark_idle_sessions(self, timeout: timedelta | float, now: datetime | None = None) -> int:
        """Move sessions quiet for longer than ``timeout`` to ``idle``."""
        window = _as_window(timeout)
        marked = 0
        for session in self._sessions.values():
            if session.status == "idle":
                continue
            if is_older_than(session.lastActivityAt, window, now):
                session.status = "idle"
                session.pendingToolUse = None
                self._outbox.mark_changed(session.sessionId)
                marked += 1
        return marked

    def evict_idle_sessions(self, threshold: timedelta | float, now: datetime | None = None) -> int:
        """Remove idle sessions quiet for longer than ``threshold``."""
        window = _as_window(threshold)
        doomed = [
            session.sessionId
            for session in self._sessions.values()
            if session.status == "idle" and is_older_than(session.lastActivityAt, window, now)
        ]
        for session_id in doomed:
            self.remove_session(session_id)
        return len(doomed)

    def _evict_oldest(self) -> None:
        oldest = min(self._sessions.values(), key=lambda s: s.lastActivityAt)
        logger.info(
            "Session cap %d reached, evicting least recently active session %s",
            self.max_sessions,
            oldest.sessionId,
        )
        self.remove_session(oldest.sessionId)
