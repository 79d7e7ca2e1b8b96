"""Shared fixtures: in-memory stand-ins for Google Tasks and Apple Reminders."""

import itertools
import threading
from collections import Counter
from dataclasses import replace

import pytest

from tasks_sync.exceptions import (
    ItemNotFoundError,
    LocalStoreError,
    RemoteServiceError,
    SecretsUnavailableError,
)
from tasks_sync.models import (
    STATUS_COMPLETED,
    STATUS_NEEDS_ACTION,
    LocalItem,
    RemoteItem,
    RemoteList,
    utc_now,
)
from tasks_sync.sync_engine import ReconciliationEngine
from tasks_sync.sync_state import MappingStore


class FakeRemote:
    """Google Tasks held in memory. Lists are matched by exact title."""

    def __init__(self):
        self.lists: dict[str, str] = {}
        self.tasks: dict[str, dict[str, RemoteItem]] = {}
        self.calls: Counter = Counter()
        self.fail_titles: set[str] = set()
        self.fail_list_reads = False
        self.missing_secrets = False
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._list_lock = threading.Lock()

    # Test helpers

    def add_list(self, title: str) -> str:
        with self._lock:
            list_id = f"list-{next(self._ids)}"
            self.lists[list_id] = title
            self.tasks[list_id] = {}
            return list_id

    def add_task(self, list_title: str, title: str, completed: bool = False, **fields) -> RemoteItem:
        list_id = self.list_id(list_title) or self.add_list(list_title)
        with self._lock:
            task = RemoteItem(
                id=f"task-{next(self._ids)}",
                list_id=list_id,
                title=title,
                status=STATUS_COMPLETED if completed else STATUS_NEEDS_ACTION,
                completed_at=utc_now() if completed else None,
                **fields,
            )
            self.tasks[list_id][task.id] = task
            return task

    def list_id(self, title: str):
        for list_id, list_title in self.lists.items():
            if list_title == title:
                return list_id
        return None

    def all_tasks(self) -> list[RemoteItem]:
        return [task for tasks in self.tasks.values() for task in tasks.values()]

    def task(self, task_id: str) -> RemoteItem:
        for task in self.all_tasks():
            if task.id == task_id:
                return task
        raise KeyError(task_id)

    def set_completed(self, task_id: str, completed: bool):
        task = self.task(task_id)
        task.status = STATUS_COMPLETED if completed else STATUS_NEEDS_ACTION
        task.completed_at = utc_now() if completed else None

    def remove(self, task_id: str):
        for tasks in self.tasks.values():
            tasks.pop(task_id, None)

    # Client surface

    def check_credentials(self):
        self.calls["check_credentials"] += 1
        if self.missing_secrets:
            raise SecretsUnavailableError(["GOOGLE_REFRESH_TOKEN"])

    def close(self):
        self.calls["close"] += 1

    def list_task_lists(self) -> list[RemoteList]:
        self.calls["list_task_lists"] += 1
        if self.fail_list_reads:
            raise RemoteServiceError("lists unavailable", status_code=503)
        return [RemoteList(id=list_id, title=title) for list_id, title in self.lists.items()]

    def find_or_create_task_list(self, name: str) -> str:
        with self._list_lock:
            self.calls["find_or_create_task_list"] += 1
            return self.list_id(name) or self.add_list(name)

    def list_tasks(self, list_id, include_completed=True, include_deleted=False) -> list[RemoteItem]:
        self.calls["list_tasks"] += 1
        return [
            replace(task) for task in self.tasks.get(list_id, {}).values()
            if (include_completed or not task.completed) and (include_deleted or not task.deleted)
        ]

    def get_task(self, list_id, task_id):
        self.calls["get_task"] += 1
        task = self.tasks.get(list_id, {}).get(task_id)
        return replace(task) if task else None

    def task_exists(self, list_id, task_id) -> bool:
        task = self.get_task(list_id, task_id)
        return task is not None and not task.deleted

    def create_task(self, list_id, title, notes=None, due=None, completed=False) -> str:
        with self._lock:
            self.calls["create_task"] += 1
        if title in self.fail_titles:
            raise RemoteServiceError(f"create failed for {title}", status_code=500)
        task = RemoteItem(
            id=f"task-{next(self._ids)}",
            list_id=list_id,
            title=title,
            notes=notes,
            due=due,
            status=STATUS_COMPLETED if completed else STATUS_NEEDS_ACTION,
        )
        with self._lock:
            self.tasks[list_id][task.id] = task
        return task.id

    def update_task(self, list_id, task_id, title=None, notes=None, due=None, completed=None):
        with self._lock:
            self.calls["update_task"] += 1
        task = self.tasks.get(list_id, {}).get(task_id)
        if task is None:
            raise RemoteServiceError(f"PATCH task {task_id} failed: 404", status_code=404)
        if title is not None:
            task.title = title
        if notes is not None:
            task.notes = notes
        if due is not None:
            task.due = due
        if completed is not None:
            self.set_completed(task_id, completed)
        return replace(task)


class FakeLocal:
    """Apple Reminders held in memory."""

    def __init__(self):
        self.items: dict[str, LocalItem] = {}
        self.calls: Counter = Counter()
        self.fail_titles: set[str] = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, title: str, list_name: str = None, completed: bool = False, **fields) -> LocalItem:
        with self._lock:
            local_id = fields.pop("local_id", None) or f"REM-{next(self._ids)}"
            item = LocalItem(
                local_id=local_id,
                title=title,
                list_name=list_name,
                completed=completed,
                **fields,
            )
            self.items[local_id] = item
            return item

    def get_all_reminders(self, include_completed: bool = True) -> list[LocalItem]:
        self.calls["get_all_reminders"] += 1
        return [
            replace(item) for item in self.items.values()
            if include_completed or not item.completed
        ]

    def list_incomplete(self, lists=None) -> list[LocalItem]:
        wanted = set(lists or [])
        return [
            item for item in self.get_all_reminders(include_completed=False)
            if not wanted or item.list_name in wanted
        ]

    def get_item(self, local_id):
        item = self.items.get(local_id)
        return replace(item) if item else None

    def create_item(self, list_name, title, notes=None, due_date=None, completed=False) -> str:
        self.calls["create_item"] += 1
        if title in self.fail_titles:
            raise LocalStoreError(f"reminders-cli add failed for {title}")
        item = self.add(title, list_name=list_name, completed=completed, notes=notes or "", due_date=due_date)
        return item.local_id

    def set_completed(self, local_id, completed, completed_at=None):
        self.calls["set_completed"] += 1
        item = self.items.get(local_id)
        if item is None:
            raise ItemNotFoundError(local_id, "Apple Reminders")
        item.completed = completed
        item.completion_date = completed_at if completed else None


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def local() -> FakeLocal:
    return FakeLocal()


@pytest.fixture
def store(tmp_path) -> MappingStore:
    return MappingStore(tmp_path / "sync_state.db")


@pytest.fixture
def make_engine(remote, local, store):
    def factory(max_workers: int = 1, with_local: bool = True, sync_lists=()):
        return ReconciliationEngine(
            remote=remote,
            store=store,
            local=local if with_local else None,
            max_workers=max_workers,
            default_list_name="Reminders",
            sync_lists=sync_lists,
        )
    return factory


@pytest.fixture
def engine(make_engine) -> ReconciliationEngine:
    return make_engine()
