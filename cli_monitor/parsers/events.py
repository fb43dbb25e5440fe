"""Typed view of one Claude Code transcript line.

Only the fields the session reducer reads are modelled; everything else on
the raw JSON object is ignored. Message content is either a plain string or
a list of blocks discriminated on ``type``. Block kinds the reducer does not
know (``image``, ``server_tool_use``, ...) are dropped before validation.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator


class TextBlock(BaseModel):
    type: Literal["text"]
    text: str = ""


class ThinkingBlock(BaseModel):
    type: Literal["thinking"]
    thinking: str = ""


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"]
    id: str = ""
    name: str = ""


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"]
    tool_use_id: str = ""
    is_error: Optional[bool] = None


ContentBlock = Annotated[
    Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]

_KNOWN_BLOCK_TYPES = {"text", "thinking", "tool_use", "tool_result"}


class CacheCreation(BaseModel):
    ephemeral_5m_input_tokens: Optional[int] = None
    ephemeral_1h_input_tokens: Optional[int] = None


class Usage(BaseModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_creation_input_tokens: Optional[int] = None
    cache_read_input_tokens: Optional[int] = None
    cache_creation: Optional[CacheCreation] = None


class Message(BaseModel):
    role: Optional[str] = None
    model: Optional[str] = None
    content: Union[str, list[ContentBlock]] = ""
    usage: Optional[Usage] = None
    stop_reason: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _drop_unknown_blocks(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, list):
            return [
                block for block in value
                if isinstance(block, dict) and block.get("type") in _KNOWN_BLOCK_TYPES
            ]
        return value

    @property
    def blocks(self) -> list[ContentBlock]:
        if isinstance(self.content, str):
            return []
        return list(self.content)


class TranscriptEvent(BaseModel):
    sessionId: str
    type: str
    timestamp: Any = None
    cwd: Optional[str] = None
    gitBranch: Optional[str] = None
    agentId: Optional[str] = None
    message: Optional[Message] = None
    # False when the line carried sessionId/type but the rest did not validate.
    recognized: bool = True


def decode_event(raw: dict[str, Any]) -> TranscriptEvent:
    """Build a TranscriptEvent from a decoded JSON object.

    The caller has already checked ``sessionId`` and ``type``. Objects whose
    remaining fields have an unexpected shape come back as an unrecognized
    event that only touches the session.
    """
    try:
        return TranscriptEvent.model_validate(raw)
    except ValidationError:
        return TranscriptEvent(
            sessionId=raw["sessionId"],
            type=raw["type"],
            timestamp=raw.get("timestamp"),
            recognized=False,
        )
