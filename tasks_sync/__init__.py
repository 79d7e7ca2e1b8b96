"""
Apple Reminders ↔ Google Tasks Sync

A bidirectional sync tool that mirrors new reminders and completion
changes between Apple Reminders on macOS and Google Tasks.
"""

from .models import SyncedItem, LocalItem, RemoteItem, ItemPayload, PassResult
from .sync_state import MappingStore
from .apple_reminders import AppleReminders
from .google_tasks import GoogleTasksClient
from .sync_engine import ReconciliationEngine

__all__ = [
    "SyncedItem",
    "LocalItem",
    "RemoteItem",
    "ItemPayload",
    "PassResult",
    "MappingStore",
    "AppleReminders",
    "GoogleTasksClient",
    "ReconciliationEngine",
]

__version__ = "0.1.0"
