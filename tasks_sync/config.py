"""
Configuration Management

Centralizes all configurable settings with environment variable overrides.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")


def _get_project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """Get environment variable with optional default."""
    value = os.environ.get(key, default)
    if required and not value:
        raise ValueError(
            f"Required environment variable {key} is not set. "
            f"Set it with: export {key}='your-value'"
        )
    return value


def get_list_env(key: str) -> list[str]:
    """Get a comma-separated environment variable as a list of names."""
    raw = get_env(key, "") or ""
    return [part.strip() for part in raw.split(",") if part.strip()]


# =============================================================================
# Google Tasks Configuration
# =============================================================================

GOOGLE_TASKS_API_BASE = get_env("GOOGLE_TASKS_API_BASE", "https://tasks.googleapis.com/tasks/v1")

GOOGLE_TOKEN_URL = get_env("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")

# Upper bound for a single remote call, in seconds
REMOTE_TIMEOUT_SECONDS = float(get_env("REMOTE_TIMEOUT_SECONDS", "30"))

# Remote list used when a reminder has no list of its own
DEFAULT_LIST_NAME = get_env("DEFAULT_LIST_NAME", "Reminders")


# =============================================================================
# Apple Reminders Configuration
# =============================================================================

# Path to reminders-cli binary
REMINDERS_CLI_PATH = os.path.expanduser(
    get_env("REMINDERS_CLI_PATH", "~/.local/bin/reminders")
)

# Upper bound for a single reminders-cli invocation, in seconds
REMINDERS_CLI_TIMEOUT = float(get_env("REMINDERS_CLI_TIMEOUT", "60"))

# Only push reminders from these lists (empty = all lists)
SYNC_LISTS = get_list_env("SYNC_LISTS")


# =============================================================================
# Webhook Configuration
# =============================================================================

# Shared secret for the webhook endpoint (unset = no authentication)
WEBHOOK_SECRET = get_env("WEBHOOK_SECRET")

SERVER_HOST = get_env("SERVER_HOST", "127.0.0.1")

SERVER_PORT = int(get_env("SERVER_PORT", "8080"))


# =============================================================================
# Data Paths
# =============================================================================

# Project root for relative paths
PROJECT_ROOT = _get_project_root()

# Mapping store database path
SYNC_STATE_DB = Path(
    get_env("SYNC_STATE_DB", str(PROJECT_ROOT / "sync_state.db"))
)

# Local idempotency cache kept by the pass driver
LOCAL_STATE_FILE = Path(
    os.path.expanduser(get_env("LOCAL_STATE_FILE", "~/.tasks-sync-state.json"))
)

# Logs directory
LOGS_DIR = Path(
    get_env("LOGS_DIR", str(PROJECT_ROOT / "logs"))
)


# =============================================================================
# Sync Configuration
# =============================================================================

# Items processed concurrently within one phase (1 = serial)
SYNC_MAX_WORKERS = int(get_env("SYNC_MAX_WORKERS", "1"))


# =============================================================================
# Helper to print current configuration
# =============================================================================

def print_config():
    """Print current configuration (for debugging)."""
    print("Current Configuration:")
    print(f"  GOOGLE_TASKS_API_BASE: {GOOGLE_TASKS_API_BASE}")
    print(f"  REMOTE_TIMEOUT_SECONDS: {REMOTE_TIMEOUT_SECONDS}")
    print(f"  DEFAULT_LIST_NAME: {DEFAULT_LIST_NAME}")
    for key in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REFRESH_TOKEN"):
        print(f"  {key}: {'*' * 8} (set)" if os.environ.get(key) else f"  {key}: NOT SET")
    print(f"  REMINDERS_CLI_PATH: {REMINDERS_CLI_PATH}")
    print(f"  REMINDERS_CLI_TIMEOUT: {REMINDERS_CLI_TIMEOUT}")
    print(f"  SYNC_LISTS: {', '.join(SYNC_LISTS) if SYNC_LISTS else '(all)'}")
    print(f"  WEBHOOK_SECRET: {'*' * 8} (set)" if WEBHOOK_SECRET else "  WEBHOOK_SECRET: NOT SET")
    print(f"  SERVER: {SERVER_HOST}:{SERVER_PORT}")
    print(f"  SYNC_STATE_DB: {SYNC_STATE_DB}")
    print(f"  LOCAL_STATE_FILE: {LOCAL_STATE_FILE}")
    print(f"  LOGS_DIR: {LOGS_DIR}")
    print(f"  SYNC_MAX_WORKERS: {SYNC_MAX_WORKERS}")
