"""
Sync Engine

Core bidirectional reconciliation between Apple Reminders and Google Tasks.

The mapping store is the only memory the engine has between passes: an item
is "already handled" exactly when a mapping record says so. A pass runs four
phases in a fixed order:

1. pull completion changes (Google wins for this pass)
2. push completion changes
3. pull new Google tasks into Apple Reminders
4. push new reminders to Google Tasks

Pulling before pushing lets phase 4 exclude reminders created by phase 3 in
the same pass. When both sides flip the same item between passes, phase 1
sees it first and Google's value wins; there is no timestamp-based conflict
resolution.

Failures are per item: they are logged, collected in the PassResult and
left for the next scheduled pass to retry.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Optional, Union
import logging
import uuid

from .exceptions import ConfigurationError, MappingNotFoundError, ValidationError
from .local_cache import LocalSyncCache
from .locks import KeyedLock, local_key, remote_key
from .models import (
    AlreadySynced,
    Created,
    Failed,
    ItemError,
    ItemPayload,
    LocalItem,
    PassResult,
    PushOutcome,
    RemoteItem,
    StatusChange,
    SyncedItem,
    Updated,
    utc_now,
)
from .sync_state import MappingStore
from . import config

logger = logging.getLogger(__name__)

# Handler return values tallied into PassResult counters
STATUS_PULLED = "status_pulled"
STATUS_PUSHED = "status_pushed"
SKIPPED = "skipped"

HandlerResult = Union[None, str, ItemError]


class ReconciliationEngine:
    """
    Bidirectional reconciliation engine.

    Key features:
    - Mapping-record based identity (prevents duplicates across passes)
    - Idempotent push: mapped items short-circuit unless forced
    - Ordered phases with a same-pass exclusion set (prevents ping-pong)
    - Per-item failure isolation and per-key locking
    """

    def __init__(
        self,
        remote,
        store: Optional[MappingStore] = None,
        local=None,
        max_workers: Optional[int] = None,
        default_list_name: Optional[str] = None,
        sync_lists: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the sync engine.

        Args:
            remote: GoogleTasksClient (or anything with the same methods)
            store: MappingStore instance (creates default if None)
            local: AppleReminders instance; only needed for run_pass and the
                phases that touch the local store
            max_workers: Items processed concurrently per phase (env: SYNC_MAX_WORKERS)
            default_list_name: Remote list for reminders without a list (env: DEFAULT_LIST_NAME)
            sync_lists: Only push reminders from these lists (env: SYNC_LISTS)
        """
        self.remote = remote
        self.store = store or MappingStore()
        self.local = local
        self.max_workers = max(1, max_workers or config.SYNC_MAX_WORKERS)
        self.default_list_name = default_list_name or config.DEFAULT_LIST_NAME
        self.sync_lists = list(sync_lists) if sync_lists is not None else list(config.SYNC_LISTS)
        self._locks = KeyedLock()

    def close(self):
        close = getattr(self.remote, "close", None)
        if close is not None:
            close()

    def _require_local(self):
        if self.local is None:
            raise ConfigurationError("This operation needs a local reminder store")
        return self.local

    def _for_each(self, items: list, handler: Callable) -> list:
        """Apply handler to every item, concurrently when max_workers > 1."""
        if self.max_workers <= 1 or len(items) <= 1:
            return [handler(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(handler, items))

    @staticmethod
    def _tally(result: PassResult, outcomes: Iterable[HandlerResult]):
        for outcome in outcomes:
            if isinstance(outcome, ItemError):
                result.errors.append(outcome)
            elif outcome:
                setattr(result, outcome, getattr(result, outcome) + 1)

    def _local_snapshot(self) -> dict[str, LocalItem]:
        local = self._require_local()
        return {item.local_id: item for item in local.get_all_reminders(include_completed=True)}

    # =========================================================================
    # (a) Push new items: Apple Reminders → Google Tasks
    # =========================================================================

    def push_item(self, payload: ItemPayload) -> PushOutcome:
        """
        Push one reminder.

        Returns Created, Updated or AlreadySynced. Remote failures propagate;
        callers that process many items turn them into Failed.

        Raises:
            ValidationError: if the payload has no title
        """
        if not payload.title or not payload.title.strip():
            raise ValidationError("Missing required field: title")

        # A caller without a stable identity gets a fresh one; re-delivery of
        # the same reminder is only recognized through the identity it sends
        local_id = payload.uid or str(uuid.uuid4())

        with self._locks.hold(local_key(local_id)):
            existing = self.store.get(local_id)
            if existing and not payload.force:
                logger.info(f"  ⏭ Already synced: {payload.title} ({existing.remote_item_id})")
                return AlreadySynced(local_id, existing.remote_item_id)

            list_name = payload.list_name or self.default_list_name
            target_list_id = self.remote.find_or_create_task_list(list_name)
            logger.debug(f"  Using task list '{list_name}' ({target_list_id})")
            due = payload.due

            if existing:
                list_id = existing.remote_list_id or target_list_id
                with self._locks.hold(remote_key(existing.remote_item_id)):
                    if self.remote.task_exists(list_id, existing.remote_item_id):
                        # Completion is left alone so a remote completion survives
                        self.remote.update_task(
                            list_id,
                            existing.remote_item_id,
                            title=payload.title,
                            notes=payload.notes,
                            due=due,
                        )
                        self.store.put(SyncedItem(
                            local_id=local_id,
                            remote_item_id=existing.remote_item_id,
                            remote_list_id=list_id,
                            title=payload.title,
                            completed=existing.completed,
                            synced_at=existing.synced_at,
                        ))
                        logger.info(f"  ✓ Updated: {payload.title}")
                        return Updated(local_id, existing.remote_item_id)

                logger.info(
                    f"  Task {existing.remote_item_id} no longer exists, creating a new one"
                )

            task_id = self.remote.create_task(
                target_list_id,
                title=payload.title,
                notes=payload.notes,
                due=due,
            )
            self.store.put(SyncedItem(
                local_id=local_id,
                remote_item_id=task_id,
                remote_list_id=target_list_id,
                title=payload.title,
                completed=False,
                synced_at=existing.synced_at if existing else utc_now(),
            ))
            logger.info(f"  ✓ Created: {payload.title} → {list_name}")
            return Created(local_id, task_id)

    def _push_one(self, payload: ItemPayload) -> PushOutcome:
        if not payload.uid:
            # Resolve the identity here so a failure can still name the item
            payload = replace(payload, uid=str(uuid.uuid4()))
        try:
            return self.push_item(payload)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"  ✗ Failed: {payload.title} - {e}")
            return Failed(payload.uid, str(e))

    def push_new_items(
        self,
        result: Optional[PassResult] = None,
        force: bool = False,
        cache: Optional[LocalSyncCache] = None,
        exclude: Optional[set[str]] = None,
    ) -> PassResult:
        """
        Push every incomplete reminder that is not mapped yet.

        Args:
            result: PassResult to accumulate into (new one if None)
            force: Update already-mapped items in place instead of skipping
            cache: Local idempotency cache consulted before any remote call
            exclude: Local ids created by the pull phase of this same pass
        """
        result = result or PassResult(started_at=datetime.now())
        exclude = exclude or set()
        items = self._require_local().list_incomplete(self.sync_lists or None)
        logger.info(f"Pushing new reminders ({len(items)} incomplete)...")

        pending: list[LocalItem] = []
        for item in items:
            if item.local_id in exclude:
                logger.debug(f"  ⏭ Just imported: {item.title}")
                result.skipped += 1
            elif not force and cache is not None and item.local_id in cache:
                logger.debug(f"  ⏭ Skipped: {item.title}")
                result.skipped += 1
            else:
                pending.append(item)

        outcomes = self._for_each(pending, lambda item: self._push_one(item.to_payload(force)))

        for item, outcome in zip(pending, outcomes):
            result.record_push(outcome)
            if cache is not None and not isinstance(outcome, Failed):
                cache.record(outcome.local_id, outcome.remote_item_id, item.title)

        return result

    # =========================================================================
    # (b) Pull new items: Google Tasks → Apple Reminders
    # =========================================================================

    def unmapped_remote_items(
        self,
        result: Optional[PassResult] = None,
    ) -> list[tuple[RemoteItem, str]]:
        """
        Find Google tasks that no mapping record references.

        Returns (task, list title) pairs. Deleted tasks and tasks without an
        id or title are ignored. When result is given, a list that cannot be
        read is recorded there instead of raising.
        """
        mapped = self.store.remote_item_ids()
        found: list[tuple[RemoteItem, str]] = []

        for task_list in self.remote.list_task_lists():
            if not task_list.id or not task_list.title:
                continue
            try:
                tasks = self.remote.list_tasks(task_list.id, include_completed=True, include_deleted=True)
            except Exception as e:
                if result is None:
                    raise
                logger.error(f"  ✗ Could not read list '{task_list.title}': {e}")
                result.errors.append(ItemError("pull_items", task_list.id, str(e)))
                continue

            for task in tasks:
                if not task.id or not task.title or task.deleted:
                    continue
                if task.id in mapped:
                    continue
                found.append((task, task_list.title))

        logger.info(f"Found {len(found)} new tasks in Google")
        return found

    def _import_one(self, entry: tuple[RemoteItem, str]) -> Union[str, ItemError, None]:
        task, list_name = entry
        try:
            with self._locks.hold(remote_key(task.id)):
                if self.store.get_by_remote_id(task.id):
                    return None
                local_id = self.local.create_item(
                    list_name,
                    task.title,
                    notes=task.notes,
                    due_date=task.due,
                    completed=task.completed,
                )
                self.store.put(SyncedItem(
                    local_id=local_id,
                    remote_item_id=task.id,
                    remote_list_id=task.list_id,
                    title=task.title,
                    completed=task.completed,
                ))
                self.store.log_action("imported", local_id, {"remoteItemId": task.id})
                logger.info(f"  ✓ Imported: {task.title} → {list_name}")
                return local_id
        except Exception as e:
            logger.error(f"  ✗ Failed to import: {task.title} - {e}")
            return ItemError("pull_items", task.id, str(e))

    def pull_new_items(self, result: Optional[PassResult] = None) -> set[str]:
        """
        Create a reminder for every unmapped Google task.

        Returns:
            Local ids created in this call (the same-pass exclusion set)
        """
        result = result or PassResult(started_at=datetime.now())
        self._require_local()
        logger.info("Pulling new tasks from Google...")

        created: set[str] = set()
        for outcome in self._for_each(self.unmapped_remote_items(result), self._import_one):
            if isinstance(outcome, ItemError):
                result.errors.append(outcome)
            elif outcome:
                created.add(outcome)
                result.items_pulled += 1
        return created

    # =========================================================================
    # (c) Completion state, Google wins
    # =========================================================================

    def pull_status_changes(self, result: Optional[PassResult] = None) -> PassResult:
        """Apply completion changes made in Google to Apple Reminders."""
        result = result or PassResult(started_at=datetime.now())
        local = self._require_local()
        records = [record for _, record in self.store.get_all()]
        logger.info(f"Checking {len(records)} synced items for Google status changes...")
        snapshot = self._local_snapshot()

        def handle(record: SyncedItem) -> HandlerResult:
            try:
                with self._locks.hold(local_key(record.local_id), remote_key(record.remote_item_id)):
                    if not record.remote_list_id:
                        return SKIPPED
                    task = self.remote.get_task(record.remote_list_id, record.remote_item_id)
                    if task is None or task.deleted:
                        logger.debug(f"  ⏭ Not in Google: {record.title}")
                        return SKIPPED
                    if task.completed == record.completed:
                        return None

                    action = "completed" if task.completed else "uncompleted"
                    item = snapshot.get(record.local_id)
                    if item is None:
                        logger.warning(
                            f"  ✗ {record.title} was {action} in Google but the reminder "
                            f"{record.local_id} no longer exists; will retry next pass"
                        )
                        return SKIPPED

                    if item.completed != task.completed:
                        local.set_completed(record.local_id, task.completed, task.completed_at)
                    self.store.patch(record.local_id, completed=task.completed)
                    logger.info(f"  ✓ {action.capitalize()} in Apple: {record.title}")
                    return STATUS_PULLED
            except Exception as e:
                logger.error(f"  ✗ Status pull failed: {record.title} - {e}")
                return ItemError("pull_status", record.local_id, str(e))

        self._tally(result, self._for_each(records, handle))
        return result

    def remote_status_changes(self) -> list[StatusChange]:
        """
        Report and acknowledge Google-side completion changes.

        For callers that own the local store themselves: each divergence is
        written to the mapping immediately and the caller applies it locally.
        """
        changes: list[StatusChange] = []
        for local_id, record in self.store.get_all():
            if not record.remote_list_id:
                continue
            try:
                with self._locks.hold(local_key(local_id), remote_key(record.remote_item_id)):
                    task = self.remote.get_task(record.remote_list_id, record.remote_item_id)
                    if task is None or task.deleted or task.completed == record.completed:
                        continue
                    self.store.patch(local_id, completed=task.completed)
            except Exception as e:
                logger.error(f"  ✗ Status check failed: {record.title} - {e}")
                continue

            action = "completed" if task.completed else "uncompleted"
            logger.info(f"Task {record.title} ({local_id}) is {action} in Google")
            changes.append(StatusChange(
                local_id=local_id,
                title=record.title,
                completed=task.completed,
                changed_at=task.completed_at if task.completed else None,
            ))

        logger.info(f"Found {len(changes)} status changes from Google")
        return changes

    # =========================================================================
    # (d) Completion state, Apple → Google
    # =========================================================================

    def push_status(self, local_id: str, completed: bool) -> SyncedItem:
        """
        Set the completion state of one mapped Google task.

        Raises:
            MappingNotFoundError: if local_id was never synced
        """
        with self._locks.hold(local_key(local_id)):
            record = self.store.get(local_id)
            if record is None:
                raise MappingNotFoundError(local_id)
            if not record.remote_list_id:
                raise ValidationError(f"Synced item {local_id} has no remote list")

            with self._locks.hold(remote_key(record.remote_item_id)):
                self.remote.update_task(record.remote_list_id, record.remote_item_id, completed=completed)
                updated = self.store.patch(local_id, completed=completed)

        action = "completed" if completed else "incomplete"
        logger.info(f"  ✓ Marked Google task {record.remote_item_id} as {action}: {record.title}")
        return updated

    def push_status_changes(self, result: Optional[PassResult] = None) -> PassResult:
        """Push completion changes made in Apple Reminders to Google."""
        result = result or PassResult(started_at=datetime.now())
        records = [record for _, record in self.store.get_all()]
        logger.info(f"Checking {len(records)} synced items for Apple status changes...")
        snapshot = self._local_snapshot()

        def handle(record: SyncedItem) -> HandlerResult:
            item = snapshot.get(record.local_id)
            if item is None or item.completed == record.completed:
                return None
            try:
                self.push_status(record.local_id, item.completed)
                return STATUS_PUSHED
            except Exception as e:
                logger.error(f"  ✗ Status push failed: {record.title} - {e}")
                return ItemError("push_status", record.local_id, str(e))

        self._tally(result, self._for_each(records, handle))
        return result

    # =========================================================================
    # Mapping records
    # =========================================================================

    def register_item(self, record: SyncedItem) -> SyncedItem:
        """Record a Google task that a caller imported into Apple Reminders itself."""
        with self._locks.hold(local_key(record.local_id), remote_key(record.remote_item_id)):
            existing = self.store.get(record.local_id)
            if existing:
                record.synced_at = existing.synced_at
            self.store.put(record)
        logger.info(f"Registered {record.title}: {record.local_id} ↔ {record.remote_item_id}")
        return record

    def mapping_records(self) -> list[SyncedItem]:
        return [record for _, record in self.store.get_all()]

    def list_items(self, list_name: str) -> tuple[str, list[RemoteItem]]:
        """Resolve a Google list by name (creating it if needed) and return its tasks."""
        list_id = self.remote.find_or_create_task_list(list_name)
        return list_id, self.remote.list_tasks(list_id)

    # =========================================================================
    # Full pass
    # =========================================================================

    def _run_phase(self, name: str, phase: Callable[[], object], result: PassResult):
        try:
            return phase()
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Phase {name} aborted: {e}")
            result.errors.append(ItemError(name, "*", str(e)))
            return None

    def run_pass(self, force: bool = False, cache: Optional[LocalSyncCache] = None) -> PassResult:
        """
        Execute one full reconciliation pass.

        Args:
            force: Update already-synced reminders in place
            cache: Local idempotency cache (saved at the end of the pass)

        Returns:
            PassResult with summary of operations

        Raises:
            ConfigurationError: before any work if a collaborator or secret is missing
        """
        self._require_local()
        self.remote.check_credentials()
        result = PassResult(started_at=datetime.now())

        self._run_phase("pull_status", lambda: self.pull_status_changes(result), result)
        self._run_phase("push_status", lambda: self.push_status_changes(result), result)
        pulled = self._run_phase("pull_items", lambda: self.pull_new_items(result), result) or set()
        self._run_phase(
            "push_items",
            lambda: self.push_new_items(result, force=force, cache=cache, exclude=pulled),
            result,
        )

        if cache is not None:
            cache.save()

        result.completed_at = datetime.now()
        self.store.log_action("pass_complete", details=result.to_dict())
        logger.info("\n" + result.summary())
        for error in result.errors:
            logger.warning(f"  {error}")
        return result

    def get_status(self) -> dict:
        """Get current sync status."""
        try:
            local_count = len(self._require_local().list_incomplete())
        except Exception:
            local_count = -1

        try:
            remote_lists = len(self.remote.list_task_lists())
        except Exception:
            remote_lists = -1

        return {
            "sync_state": self.store.get_stats(),
            "incomplete_reminders": local_count,
            "google_task_lists": remote_lists,
            "last_logs": self.store.get_recent_logs(5),
        }
