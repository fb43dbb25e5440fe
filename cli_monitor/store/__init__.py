"""Session state storage."""

from cli_monitor.store.outbox import ChangeOutbox
from cli_monitor.store.session_store import SessionStore

__all__ = [
    "ChangeOutbox",
    "SessionStore",
]
