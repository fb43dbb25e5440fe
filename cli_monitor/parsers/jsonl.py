"""Incremental JSONL parsing for transcript files."""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from cli_monitor.observability import record_parser_failure
from cli_monitor.parsers.events import decode_event
from cli_monitor.parsers.reducer import apply_event

if TYPE_CHECKING:
    from cli_monitor.store import SessionStore

logger = logging.getLogger("cli_monitor.parser")


def parse_jsonl_chunk(
    file_path: str,
    data: bytes,
    base_offset: int,
    store: SessionStore,
    watch_root: str | None = None,
) -> int:
    """Fold every complete line of ``data`` into ``store``.

    Returns the number of bytes fully consumed. A trailing line without a
    newline is never consumed since the writer may still be appending to it;
    it is read again on the next pass. Blank, malformed and incomplete
    (missing ``sessionId``/``type``) lines are consumed and skipped.
    """
    consumed = 0
    position = 0
    while True:
        newline = data.find(b"\n", position)
        if newline == -1:
            break
        line = data[position:newline]
        position = newline + 1
        line_offset = base_offset + consumed
        consumed += len(line) + 1
        _consume_line(file_path, line, line_offset, store, watch_root)
    return consumed


def _consume_line(
    file_path: str,
    line: bytes,
    line_offset: int,
    store: SessionStore,
    watch_root: str | None,
) -> None:
    # Invalid UTF-8 becomes U+FFFD so every stored string stays serializable.
    stripped = line.decode("utf-8", errors="replace").strip()
    if not stripped:
        return

    try:
        raw = json.loads(stripped)
    except (ValueError, RecursionError) as exc:
        logger.debug("Skipping malformed line in %s at byte %d: %s", file_path, line_offset, type(exc).__name__)
        record_parser_failure("jsonl")
        return

    if not isinstance(raw, dict):
        return
    session_id = raw.get("sessionId")
    event_type = raw.get("type")
    if not isinstance(session_id, str) or not session_id:
        return
    if not isinstance(event_type, str) or not event_type:
        return

    event = decode_event(raw)
    session = apply_event(event, store.get_session(session_id), file_path, watch_root=watch_root)
    store.set_session(session_id, session)
