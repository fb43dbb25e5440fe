"""Pending change tracking for batched session sync."""
from __future__ import annotations

import logging
from typing import Iterable

logger = logging.getLogger("cli_monitor.store")


class ChangeOutbox:
    """Ordered sets of changed and removed session ids awaiting a drain.

    An id is pending in at most one of the two sets: a later change replaces
    an earlier removal and vice versa. ``requeue`` puts a failed batch back
    but never grows the outbox past ``max_pending``.
    """

    def __init__(self, max_pending: int = 5000):
        self.max_pending = max_pending
        self._changed: dict[str, None] = {}
        self._removed: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._changed) + len(self._removed)

    def mark_changed(self, session_id: str) -> None:
        self._removed.pop(session_id, None)
        self._changed[session_id] = None

    def mark_removed(self, session_id: str) -> None:
        self._changed.pop(session_id, None)
        self._removed[session_id] = None

    def is_pending(self, session_id: str) -> bool:
        return session_id in self._changed or session_id in self._removed

    def drain(self) -> tuple[list[str], list[str]]:
        changed = list(self._changed)
        removed = list(self._removed)
        self._changed.clear()
        self._removed.clear()
        return changed, removed

    def requeue(self, changed: Iterable[str], removed: Iterable[str]) -> int:
        """Re-add a drained batch. Returns how many ids were dropped by the cap."""
        dropped = 0
        for target, ids in ((self._changed, changed), (self._removed, removed)):
            for session_id in ids:
                if self.is_pending(session_id):
                    continue
                if len(self) >= self.max_pending:
                    dropped += 1
                    continue
                target[session_id] = None
        if dropped:
            logger.warning(
                "Change outbox full (%d pending), dropped %d retried session ids",
                len(self),
                dropped,
            )
        return dropped
