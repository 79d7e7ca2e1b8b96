"""
Data Models for Apple Reminders ↔ Google Tasks Sync

Defines the mapping record, the item shapes of both stores, and the
result types produced by the reconciliation engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Optional, Union

from .exceptions import ValidationError

STATUS_NEEDS_ACTION = "needsAction"
STATUS_COMPLETED = "completed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 / RFC 3339 timestamp.

    Returns None for empty or unparsable values instead of raising, since
    both stores occasionally hand back junk dates.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_rfc3339(dt: datetime) -> str:
    """Normalize datetime to RFC3339 `YYYY-MM-DDTHH:MM:SS.000Z` format."""
    if dt.tzinfo is None:
        # Naive datetimes are local wall-clock time
        dt = dt.astimezone()
    dt_utc = dt.astimezone(timezone.utc).replace(tzinfo=None, microsecond=0)
    return dt_utc.isoformat(timespec="seconds") + ".000Z"


def _isoformat(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


@dataclass
class SyncedItem:
    """
    Mapping record: one per reconciled task.

    Stored in sync_state.db, keyed by local_id. `completed` is the engine's
    last-known consensus completion state.
    """
    local_id: str
    remote_item_id: str
    remote_list_id: Optional[str] = None
    title: str = ""
    completed: bool = False
    synced_at: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if isinstance(self.synced_at, str):
            self.synced_at = parse_timestamp(self.synced_at) or utc_now()
        if isinstance(self.last_modified, str):
            self.last_modified = parse_timestamp(self.last_modified) or utc_now()

    def to_dict(self) -> dict:
        """Convert to the JSON wire format."""
        return {
            "localId": self.local_id,
            "remoteItemId": self.remote_item_id,
            "remoteListId": self.remote_list_id,
            "title": self.title,
            "completed": self.completed,
            "syncedAt": self.synced_at.isoformat(),
            "lastModified": self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncedItem":
        """Create from the JSON wire format (used by the register action)."""
        if not isinstance(data, dict):
            raise ValidationError("Payload must be a JSON object")
        missing = [
            key for key in ("localId", "remoteItemId", "remoteListId", "title")
            if not data.get(key)
        ]
        if missing:
            raise ValidationError(f"Missing required field: {', '.join(missing)}")
        return cls(
            local_id=str(data["localId"]),
            remote_item_id=str(data["remoteItemId"]),
            remote_list_id=str(data["remoteListId"]),
            title=str(data["title"]),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class LocalItem:
    """A reminder as read from the local store."""
    local_id: str
    title: str = ""
    notes: str = ""
    list_name: Optional[str] = None
    due_date: Optional[datetime] = None
    completed: bool = False
    completion_date: Optional[datetime] = None

    def to_payload(self, force: bool = False) -> "ItemPayload":
        """Build the push request for this reminder."""
        return ItemPayload(
            title=self.title or "Untitled",
            notes=self.notes or None,
            list_name=self.list_name,
            due_date=format_rfc3339(self.due_date) if self.due_date else None,
            uid=self.local_id,
            force=force,
        )


@dataclass
class RemoteList:
    """A Google Tasks list."""
    id: str
    title: str

    @classmethod
    def from_api(cls, data: dict) -> "RemoteList":
        return cls(id=data.get("id", ""), title=data.get("title", ""))


@dataclass
class RemoteItem:
    """A Google Tasks task."""
    id: str
    list_id: str
    title: str = ""
    notes: Optional[str] = None
    due: Optional[datetime] = None
    status: str = STATUS_NEEDS_ACTION
    completed_at: Optional[datetime] = None
    deleted: bool = False

    @property
    def completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @classmethod
    def from_api(cls, data: dict, list_id: str) -> "RemoteItem":
        """Convert a Google Tasks API resource."""
        return cls(
            id=data.get("id", ""),
            list_id=list_id,
            title=data.get("title", "") or "",
            notes=data.get("notes"),
            due=parse_timestamp(data.get("due")),
            status=data.get("status", STATUS_NEEDS_ACTION),
            completed_at=parse_timestamp(data.get("completed")),
            deleted=bool(data.get("deleted", False)),
        )

    def to_dict(self, list_name: Optional[str] = None) -> dict:
        data = {
            "remoteItemId": self.id,
            "remoteListId": self.list_id,
            "title": self.title,
            "notes": self.notes,
            "due": _isoformat(self.due),
            "completed": self.completed,
        }
        if list_name is not None:
            data["listName"] = list_name
        return data


@dataclass
class ItemPayload:
    """
    Inbound push request for a single reminder.

    `due_date` stays a raw string; unparsable dates are dropped when the
    remote item is built rather than rejected here.
    """
    title: str
    notes: Optional[str] = None
    list_name: Optional[str] = None
    due_date: Optional[str] = None
    uid: Optional[str] = None
    force: bool = False

    @property
    def due(self) -> Optional[datetime]:
        return parse_timestamp(self.due_date)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "notes": self.notes,
            "list": self.list_name,
            "dueDate": self.due_date,
            "uid": self.uid,
            "force": self.force,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ItemPayload":
        """Validate and create from the webhook JSON body."""
        if not isinstance(data, dict):
            raise ValidationError("Payload must be a JSON object")
        title = data.get("title")
        if not title or not str(title).strip():
            raise ValidationError("Missing required field: title")
        return cls(
            title=str(title),
            notes=data.get("notes") or None,
            list_name=data.get("list") or None,
            due_date=data.get("dueDate") or None,
            uid=data.get("uid") or None,
            force=bool(data.get("force", False)),
        )


# =============================================================================
# Push outcome (tagged variant)
# =============================================================================

@dataclass(frozen=True)
class Created:
    local_id: str
    remote_item_id: str
    kind: ClassVar[str] = "created"
    message: ClassVar[str] = "Task created successfully"


@dataclass(frozen=True)
class Updated:
    local_id: str
    remote_item_id: str
    kind: ClassVar[str] = "updated"
    message: ClassVar[str] = "Task updated successfully"


@dataclass(frozen=True)
class AlreadySynced:
    local_id: str
    remote_item_id: str
    kind: ClassVar[str] = "already_synced"
    message: ClassVar[str] = "Already synced"


@dataclass(frozen=True)
class Failed:
    local_id: str
    error: str
    kind: ClassVar[str] = "failed"

    @property
    def message(self) -> str:
        return self.error


PushOutcome = Union[Created, Updated, AlreadySynced, Failed]


@dataclass
class StatusChange:
    """A completion-state divergence observed on the remote side."""
    local_id: str
    title: str
    completed: bool
    changed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "localId": self.local_id,
            "title": self.title,
            "completed": self.completed,
            "changedAt": _isoformat(self.changed_at),
        }


@dataclass
class ItemError:
    """A per-item failure collected during a pass."""
    phase: str
    key: str
    message: str

    def __str__(self) -> str:
        return f"[{self.phase}] {self.key}: {self.message}"


@dataclass
class PassResult:
    """Summary of one reconciliation pass."""
    started_at: datetime
    completed_at: Optional[datetime] = None
    status_pulled: int = 0
    status_pushed: int = 0
    items_pulled: int = 0
    items_created: int = 0
    items_updated: int = 0
    already_synced: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)

    def record_push(self, outcome: PushOutcome):
        if isinstance(outcome, Created):
            self.items_created += 1
        elif isinstance(outcome, Updated):
            self.items_updated += 1
        elif isinstance(outcome, AlreadySynced):
            self.already_synced += 1
        else:
            self.errors.append(ItemError("push_items", outcome.local_id, outcome.error))

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "remote_to_local": {
                "status_changes": self.status_pulled,
                "created": self.items_pulled,
            },
            "local_to_remote": {
                "status_changes": self.status_pushed,
                "created": self.items_created,
                "updated": self.items_updated,
            },
            "already_synced": self.already_synced,
            "skipped": self.skipped,
            "errors": [str(e) for e in self.errors],
        }

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"Sync completed at {self.completed_at}",
            f"Google → Apple: {self.items_pulled} created, "
            f"{self.status_pulled} completion changes",
            f"Apple → Google: {self.items_created} created, {self.items_updated} updated, "
            f"{self.status_pushed} completion changes",
            f"Already synced: {self.already_synced}",
            f"Skipped: {self.skipped}",
        ]
        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
        return "\n".join(lines)
