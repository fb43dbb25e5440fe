"""Pydantic models for session state, matching the sync payload field names."""
from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Generic, Literal, Optional, TypeVar

T = TypeVar("T")

SessionStatus = Literal["working", "waiting_for_approval", "waiting_for_input", "idle"]


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    offset: int
    limit: int
# ── Session-related models ──────────────────────────────────────────

class PendingToolUse(BaseModel):
    toolName: str
    toolId: str


class TokenUsage(BaseModel):
    inputTokens: int = 0
    outputTokens: int = 0
    cacheCreationTokens: int = 0
    cacheReadTokens: int = 0
    ephemeral5mTokens: int = 0
    ephemeral1hTokens: int = 0

    def plus(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            inputTokens=self.inputTokens + other.inputTokens,
            outputTokens=self.outputTokens + other.outputTokens,
            cacheCreationTokens=self.cacheCreationTokens + other.cacheCreationTokens,
            cacheReadTokens=self.cacheReadTokens + other.cacheReadTokens,
            ephemeral5mTokens=self.ephemeral5mTokens + other.ephemeral5mTokens,
            ephemeral1hTokens=self.ephemeral1hTokens + other.ephemeral1hTokens,
        )


class SessionRecord(BaseModel):
    sessionId: str
    filePath: str
    cwd: str = ""
    projectName: str = ""
    projectHash: str = ""
    gitBranch: Optional[str] = None
    status: SessionStatus = "working"
    messageCount: int = 0
    turnCount: int = 0
    goal: Optional[str] = None  # first user text, never overwritten
    recentOutput: Optional[str] = None
    pendingToolUse: Optional[PendingToolUse] = None  # set iff status == "waiting_for_approval"
    tokenUsage: TokenUsage = Field(default_factory=TokenUsage)
    model: Optional[str] = None
    startedAt: datetime
    lastActivityAt: datetime
    isSubagent: bool = False
    parentSessionId: Optional[str] = None


class ChangeBatch(BaseModel):
    updated: list[SessionRecord] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.updated and not self.removed
