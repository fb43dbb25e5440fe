"""Fold transcript events into SessionRecord state.

``apply_event`` is pure: it never mutates the record it is given and never
touches the filesystem. Status transitions::

    working -> waiting_for_approval   assistant tool_use
    waiting_for_approval -> working   user (tool_result)
    working -> waiting_for_input      assistant with a stop_reason
    waiting_for_input -> working      user
    any -> idle                       summary, or the store's idle sweep
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path, PurePath

from cli_monitor.date_utils import parse_timestamp, utc_now
from cli_monitor.models import PendingToolUse, SessionRecord, TokenUsage
from cli_monitor.parsers.events import (
    Message,
    TextBlock,
    ToolUseBlock,
    TranscriptEvent,
    Usage,
)

GOAL_MAX_CHARS = 200
RECENT_OUTPUT_MAX_CHARS = 500

_SUBAGENTS_DIR = "subagents"


def _project_name(cwd: str) -> str:
    if not cwd:
        return ""
    return PurePath(cwd.rstrip("/\\") or cwd).name


def _relative_parts(file_path: str, watch_root: str | None) -> tuple[str, ...]:
    path = PurePath(file_path)
    if watch_root:
        try:
            return path.relative_to(watch_root).parts
        except ValueError:
            pass
    return path.parts


def _subagent_parent(file_path: str, watch_root: str | None = None) -> tuple[bool, str | None]:
    """Detect a subagent transcript from its path below the watch root.

    Both ``.../subagents/<parentId>/<agent>.jsonl`` and Claude Code's own
    ``.../<parentId>/subagents/<agent>.jsonl`` layouts are recognised.
    """
    parts = _relative_parts(file_path, watch_root)
    if _SUBAGENTS_DIR not in parts:
        return False, None
    index = parts.index(_SUBAGENTS_DIR)
    # A directory segment after "subagents" (not the file itself) names the parent.
    if index + 2 < len(parts):
        return True, parts[index + 1]
    if index > 0:
        return True, parts[index - 1]
    return True, None


def new_session(
    event: TranscriptEvent,
    file_path: str,
    event_time: datetime | None = None,
    watch_root: str | None = None,
) -> SessionRecord:
    created_at = event_time or utc_now()
    cwd = event.cwd or ""
    is_subagent, parent_id = _subagent_parent(file_path, watch_root)
    return SessionRecord(
        sessionId=event.sessionId,
        filePath=file_path,
        cwd=cwd,
        projectName=_project_name(cwd),
        projectHash=Path(file_path).parent.name,
        gitBranch=event.gitBranch or None,
        startedAt=created_at,
        lastActivityAt=created_at,
        isSubagent=is_subagent or bool(event.agentId),
        parentSessionId=parent_id,
    )


def _usage_delta(usage: Usage | None) -> TokenUsage:
    if usage is None:
        return TokenUsage()
    cache = usage.cache_creation
    return TokenUsage(
        inputTokens=max(0, usage.input_tokens or 0),
        outputTokens=max(0, usage.output_tokens or 0),
        cacheCreationTokens=max(0, usage.cache_creation_input_tokens or 0),
        cacheReadTokens=max(0, usage.cache_read_input_tokens or 0),
        ephemeral5mTokens=max(0, (cache.ephemeral_5m_input_tokens or 0) if cache else 0),
        ephemeral1hTokens=max(0, (cache.ephemeral_1h_input_tokens or 0) if cache else 0),
    )


def _text_parts(message: Message) -> list[str]:
    if isinstance(message.content, str):
        return [message.content] if message.content.strip() else []
    # Thinking blocks never count as output.
    return [
        block.text for block in message.blocks
        if isinstance(block, TextBlock) and block.text.strip()
    ]


def _apply_user(session: SessionRecord, message: Message | None) -> None:
    session.status = "working"
    session.pendingToolUse = None
    if message is None:
        return
    session.messageCount += 1
    if session.goal is None:
        texts = _text_parts(message)
        if texts:
            session.goal = texts[0].strip()[:GOAL_MAX_CHARS]


def _apply_assistant(session: SessionRecord, message: Message | None) -> None:
    if message is None:
        return
    session.messageCount += 1
    if message.model:
        session.model = message.model
    session.tokenUsage = session.tokenUsage.plus(_usage_delta(message.usage))

    texts = _text_parts(message)
    if texts:
        session.recentOutput = texts[-1][:RECENT_OUTPUT_MAX_CHARS]

    tool_uses = [
        block for block in message.blocks
        if isinstance(block, ToolUseBlock) and block.name and block.id
    ]
    if tool_uses:
        session.status = "waiting_for_approval"
        session.pendingToolUse = PendingToolUse(toolName=tool_uses[0].name, toolId=tool_uses[0].id)
    elif message.stop_reason is not None:
        session.turnCount += 1
        session.status = "waiting_for_input"
        session.pendingToolUse = None
    elif texts:
        session.status = "working"
        session.pendingToolUse = None


def apply_event(
    event: TranscriptEvent,
    session: SessionRecord | None,
    file_path: str,
    *,
    watch_root: str | None = None,
) -> SessionRecord:
    """Return ``session`` updated with ``event``, creating it when absent.

    A session last seen in a different transcript file is recreated from
    this event rather than carried over. ``watch_root`` bounds the part of
    ``file_path`` searched for the subagent layout.
    """
    event_time = parse_timestamp(event.timestamp)
    if session is None or session.filePath != file_path:
        updated = new_session(event, file_path, event_time, watch_root)
    else:
        updated = session.model_copy()
        if event_time is not None:
            updated.lastActivityAt = event_time
    if event.gitBranch:
        updated.gitBranch = event.gitBranch

    if not event.recognized:
        return updated

    if event.type == "user":
        _apply_user(updated, event.message)
    elif event.type == "assistant":
        _apply_assistant(updated, event.message)
    elif event.type == "summary":
        updated.status = "idle"
        updated.pendingToolUse = None
    return updated
