"""
Apple Reminders Interface

Uses reminders-cli (Swift/EventKit) for all operations:
show-all, show-lists, add, new-list, complete, uncomplete.
"""

import logging
import os
import subprocess
import json
from datetime import datetime, time, timezone
from typing import Iterable, Optional

from .exceptions import ItemNotFoundError, LocalStoreError
from .models import LocalItem, parse_timestamp
from . import config

logger = logging.getLogger(__name__)


def normalize_apple_id(apple_id: Optional[str]) -> Optional[str]:
    """
    Normalize Apple reminder ID to plain UUID format.

    Some sources return: x-apple-reminder://UUID
    reminders-cli returns: UUID
    We standardize on: UUID
    """
    if not apple_id:
        return None
    if apple_id.startswith("x-apple-reminder://"):
        return apple_id[len("x-apple-reminder://"):]
    return apple_id


def format_due_date(due: datetime) -> str:
    """
    Format a due date for reminders-cli --due-date.

    Google Tasks stores due dates as midnight UTC with no time of day; those
    stay plain dates so the day does not shift in timezones west of UTC.
    Anything else is converted to local wall-clock time.
    """
    if due.tzinfo is not None:
        due_utc = due.astimezone(timezone.utc)
        if due_utc.time() == time(0, 0):
            return due_utc.date().isoformat()
    return due.astimezone().strftime("%Y-%m-%d %H:%M")


class AppleReminders:
    """
    Interface to Apple Reminders using reminders-cli.

    Every invocation is bounded by REMINDERS_CLI_TIMEOUT.
    """

    def __init__(self, reminders_cli_path: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize the Apple Reminders interface.

        Args:
            reminders_cli_path: Path to reminders-cli binary (env: REMINDERS_CLI_PATH)
            timeout: Seconds before a reminders-cli call is abandoned (env: REMINDERS_CLI_TIMEOUT)
        """
        self.reminders_cli = reminders_cli_path or config.REMINDERS_CLI_PATH
        self.timeout = timeout if timeout is not None else config.REMINDERS_CLI_TIMEOUT
        self._verify_reminders_cli()

    def _verify_reminders_cli(self):
        """Verify reminders-cli is available."""
        if not os.path.exists(self.reminders_cli):
            raise FileNotFoundError(
                f"reminders-cli not found at {self.reminders_cli}. "
                "Please install from https://github.com/keith/reminders-cli "
                "or set REMINDERS_CLI_PATH environment variable."
            )

    def _run_reminders_cli(self, *args: str) -> str:
        """Run reminders-cli and return output."""
        cmd = [self.reminders_cli] + list(args)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            raise LocalStoreError(f"reminders-cli {args[0]} failed: {(e.stderr or '').strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise LocalStoreError(f"reminders-cli {args[0]} timed out after {self.timeout}s") from e
        return result.stdout

    def _load_json(self, *args: str):
        output = self._run_reminders_cli(*args)
        if not output.strip():
            return []
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise LocalStoreError(f"reminders-cli {args[0]} returned invalid JSON") from e

    def list_lists(self) -> list[str]:
        """Get all reminder list names."""
        output = self._run_reminders_cli("show-lists")
        return [line.strip() for line in output.strip().split("\n") if line.strip()]

    def ensure_list(self, name: str):
        if name not in self.list_lists():
            self._run_reminders_cli("new-list", name)
            logger.info(f"Created reminder list: {name}")

    def get_all_reminders(self, include_completed: bool = True) -> list[LocalItem]:
        """Get all reminders from all lists."""
        args = ["show-all", "--format", "json"]
        if include_completed:
            args.append("--include-completed")
        return [self._reminder_to_item(r) for r in self._load_json(*args)]

    def list_incomplete(self, lists: Optional[Iterable[str]] = None) -> list[LocalItem]:
        """
        Get incomplete reminders, optionally only from the named lists.

        Args:
            lists: List names to include (None or empty = every list)
        """
        wanted = set(lists or [])
        items = self.get_all_reminders(include_completed=False)
        return [
            item for item in items
            if not item.completed and (not wanted or item.list_name in wanted)
        ]

    def get_item(self, local_id: str) -> Optional[LocalItem]:
        """Get a reminder by its external ID, completed or not."""
        wanted = normalize_apple_id(local_id)
        for item in self.get_all_reminders(include_completed=True):
            if item.local_id == wanted:
                return item
        return None

    def _reminder_to_item(self, reminder: dict) -> LocalItem:
        """Convert reminders-cli JSON to LocalItem."""
        return LocalItem(
            local_id=normalize_apple_id(reminder.get("externalId")) or "",
            title=reminder.get("title", "") or "",
            notes=reminder.get("notes", "") or "",
            list_name=reminder.get("list") or None,
            due_date=parse_timestamp(reminder.get("dueDate")),
            completed=bool(reminder.get("isCompleted", False)),
            completion_date=parse_timestamp(reminder.get("completionDate")),
        )

    def create_item(
        self,
        list_name: str,
        title: str,
        notes: Optional[str] = None,
        due_date: Optional[datetime] = None,
        completed: bool = False,
    ) -> str:
        """
        Create a new reminder using reminders-cli.

        Returns:
            The created reminder's external ID
        """
        self.ensure_list(list_name)

        args = ["add", list_name, title, "--format", "json"]
        if notes:
            args.extend(["--notes", notes])
        if due_date:
            args.extend(["--due-date", format_due_date(due_date)])

        result = self._load_json(*args)
        local_id = normalize_apple_id(result.get("externalId") if isinstance(result, dict) else None)
        if not local_id:
            raise LocalStoreError(f"reminders-cli add returned no ID for '{title}'")

        if completed:
            self._run_reminders_cli("complete", list_name, local_id)

        return local_id

    def set_completed(
        self,
        local_id: str,
        completed: bool,
        completed_at: Optional[datetime] = None,
    ):
        """
        Mark a reminder complete or incomplete.

        EventKit stamps its own completion date; completed_at is only logged.

        Raises:
            ItemNotFoundError: if the reminder no longer exists
        """
        current = self.get_item(local_id)
        if current is None:
            raise ItemNotFoundError(local_id, "Apple Reminders")

        if current.completed == completed:
            return

        command = "complete" if completed else "uncomplete"
        self._run_reminders_cli(command, current.list_name or config.DEFAULT_LIST_NAME, current.local_id)
        if completed_at:
            logger.debug(f"  {current.title}: completed remotely at {completed_at.isoformat()}")

    def test_connection(self) -> bool:
        """Test connection to Apple Reminders."""
        try:
            self.list_lists()
            return True
        except Exception:
            return False
