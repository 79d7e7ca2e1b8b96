"""
Error Taxonomy

Configuration errors stop a pass before any work is attempted.
Per-item errors (remote/local failures, missing items) are caught by the
engine for that item only. Validation errors are rejected before any store
mutation.
"""

from typing import Optional


class TasksSyncError(Exception):
    """Base class for all sync errors."""


class ConfigurationError(TasksSyncError):
    """A required setting or collaborator is missing."""


class SecretsUnavailableError(ConfigurationError):
    """OAuth credentials could not be loaded."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing credentials: {', '.join(missing)}")


class ValidationError(TasksSyncError):
    """An inbound payload is missing a required field or is malformed."""


class MappingNotFoundError(TasksSyncError):
    """No mapping record exists for a local id."""

    def __init__(self, local_id: str):
        self.local_id = local_id
        super().__init__(f"Synced item not found: {local_id}")


class ItemNotFoundError(TasksSyncError):
    """An item is missing from the local or remote store."""

    def __init__(self, item_id: str, where: str = "store"):
        self.item_id = item_id
        self.where = where
        super().__init__(f"Item {item_id} not found in {where}")


class RemoteServiceError(TasksSyncError):
    """The remote task service returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class LocalStoreError(TasksSyncError):
    """reminders-cli failed or returned unusable output."""
