"""cli-monitor configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default

# Transcript root (Claude Code writes one directory per project hash here)
WATCH_DIR = Path(os.getenv("CLI_MONITOR_WATCH_DIR", str(Path.home() / ".claude" / "projects"))).expanduser()

# Watcher tuning
DEBOUNCE_MS = _env_int("CLI_MONITOR_DEBOUNCE_MS", 200)
MAX_READ_BYTES = _env_int("CLI_MONITOR_MAX_READ_BYTES", 100 * 1024 * 1024)
RETENTION_DAYS = _env_int("CLI_MONITOR_RETENTION_DAYS", 7)
ROOT_POLL_INTERVAL_SECONDS = _env_int("CLI_MONITOR_ROOT_POLL_INTERVAL_SECONDS", 5)
ROOT_WAIT_TIMEOUT_SECONDS = _env_int("CLI_MONITOR_ROOT_WAIT_TIMEOUT_SECONDS", 5 * 60)

# Session store limits
MAX_SESSIONS = _env_int("CLI_MONITOR_MAX_SESSIONS", 1000)
MAX_PENDING_CHANGES = _env_int("CLI_MONITOR_MAX_PENDING_CHANGES", 5000)

# Sync loop
FLUSH_INTERVAL_MS = _env_int("CLI_MONITOR_FLUSH_INTERVAL_MS", 500)
IDLE_CHECK_INTERVAL_SECONDS = _env_int("CLI_MONITOR_IDLE_CHECK_INTERVAL_SECONDS", 30)
IDLE_TIMEOUT_SECONDS = _env_int("CLI_MONITOR_IDLE_TIMEOUT_SECONDS", 5 * 60)
IDLE_EVICTION_SECONDS = _env_int("CLI_MONITOR_IDLE_EVICTION_SECONDS", 30 * 60)

# Observability
OTEL_ENABLED = _env_bool("CLI_MONITOR_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("CLI_MONITOR_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("CLI_MONITOR_OTEL_SERVICE_NAME", "cli-monitor")
PROM_PORT = _env_int("CLI_MONITOR_PROM_PORT", 0)

# Server settings
HOST = os.getenv("CLI_MONITOR_HOST", "127.0.0.1")
PORT = int(os.getenv("CLI_MONITOR_PORT", "8765"))
