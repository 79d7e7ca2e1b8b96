"""
Local idempotency cache.

Remembers which reminders this machine already pushed in an earlier run so
the push phase can skip them without a round trip. The mapping store stays
authoritative; losing or resetting this file only costs extra lookups.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import config

logger = logging.getLogger(__name__)


class LocalSyncCache:
    """JSON file of local_id -> {remoteItemId, title, syncedAt}."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else config.LOCAL_STATE_FILE
        self.entries: dict[str, dict] = self._load()

    def _load(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable sync cache {self.path}: {e}")
            return {}
        entries = data.get("syncedReminders", {}) if isinstance(data, dict) else {}
        return entries if isinstance(entries, dict) else {}

    def save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump({"syncedReminders": self.entries}, f, indent=2)
        tmp_path.replace(self.path)

    def reset(self):
        """Forget everything and persist the empty cache."""
        self.entries = {}
        self.save()

    def __contains__(self, local_id: str) -> bool:
        return local_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, local_id: str) -> Optional[dict]:
        return self.entries.get(local_id)

    def record(self, local_id: str, remote_item_id: Optional[str], title: str):
        self.entries[local_id] = {
            "remoteItemId": remote_item_id,
            "title": title,
            "syncedAt": datetime.now().isoformat(),
        }
