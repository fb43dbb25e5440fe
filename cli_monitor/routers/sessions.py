"""Read-only query API over live session state."""
from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from cli_monitor.models import PaginatedResponse, SessionRecord, SessionStatus
from cli_monitor.store import SessionStore

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _get_store(request: Request) -> SessionStore:
    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Session store not initialized")
    return store


@sessions_router.get("", response_model=PaginatedResponse[SessionRecord])
async def list_sessions(
    request: Request,
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    status: Annotated[Optional[SessionStatus], Query(description="Filter by session status")] = None,
    include_subagents: Annotated[bool, Query(description="Include subagent sessions")] = True,
    project_hash: Annotated[Optional[str], Query(description="Filter by transcript project directory")] = None,
):
    """List sessions, most recently active first."""
    store = _get_store(request)
    sessions = store.list_sessions()
    if status:
        sessions = [s for s in sessions if s.status == status]
    if not include_subagents:
        sessions = [s for s in sessions if not s.isSubagent]
    if project_hash:
        sessions = [s for s in sessions if s.projectHash == project_hash]
    sessions.sort(key=lambda s: s.lastActivityAt, reverse=True)

    page = [s.model_copy(deep=True) for s in sessions[offset:offset + limit]]
    return PaginatedResponse[SessionRecord](
        items=page,
        total=len(sessions),
        offset=offset,
        limit=limit,
    )


@sessions_router.get("/{session_id}", response_model=SessionRecord)
async def get_session(request: Request, session_id: str):
    """Return a single session by ID."""
    session = _get_store(request).get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session.model_copy(deep=True)
