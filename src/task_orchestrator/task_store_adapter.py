"""Thin task-level wrapper around a TaskStore.

The adapter knows where task records live and how the three standing
subscriptions are filtered. It performs no state-machine checks; those
belong to the lifecycle manager.
"""

from collections.abc import Iterable
from datetime import timedelta

from .common.schema_task_record import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TaskFilter,
    TaskRecord,
    TaskRecordUpdate,
    TaskResultRecord,
    TaskStatus,
    TaskType,
    task_key,
    utc_now,
)
from .common.task_store import SnapshotCallback, TaskStore


class TaskStoreAdapter:
    def __init__(self, store: TaskStore, recent_window: timedelta = timedelta(hours=24)):
        self.store: TaskStore = store
        self.recent_window: timedelta = recent_window

    def create(self, record: TaskRecord) -> str:
        self.store.put(record.key, record)
        return record.id

    def get(self, owner_id: str, task_id: str) -> TaskRecord | None:
        return self.store.get(task_key(owner_id, task_id))

    def update_progress(
        self,
        owner_id: str,
        task_id: str,
        *,
        progress: int,
        step: int,
        step_label: str | None,
        status: TaskStatus | None = None,
    ) -> TaskRecord | None:
        return self._update(
            owner_id,
            task_id,
            TaskRecordUpdate(status=status, progress=progress, step=step, step_label=step_label),
        )

    def complete(self, owner_id: str, task_id: str, result: TaskResultRecord) -> TaskRecord | None:
        now = utc_now()
        return self._update(
            owner_id,
            task_id,
            TaskRecordUpdate(
                status=TaskStatus.completed,
                progress=100,
                result=result,
                notification_shown=False,
                completed_at=now,
                updated_at=now,
            ),
        )

    def fail(self, owner_id: str, task_id: str, error: str) -> TaskRecord | None:
        now = utc_now()
        return self._update(
            owner_id,
            task_id,
            TaskRecordUpdate(
                status=TaskStatus.failed,
                error=error,
                notification_shown=False,
                completed_at=now,
                updated_at=now,
            ),
        )

    def mark_notified(self, owner_id: str, task_id: str) -> TaskRecord | None:
        return self._update(owner_id, task_id, TaskRecordUpdate(notification_shown=True))

    def _update(self, owner_id: str, task_id: str, updates: TaskRecordUpdate) -> TaskRecord | None:
        if updates.updated_at is None:
            updates = updates.model_copy(update={"updated_at": utc_now()})
        return self.store.update(task_key(owner_id, task_id), updates)

    # ---------------------------
    # Queries
    # ---------------------------
    def active_filter(
        self,
        owner_id: str,
        *,
        target_id: str | None = None,
        types: Iterable[TaskType] | None = None,
    ) -> TaskFilter:
        return TaskFilter(
            owner_id=owner_id,
            statuses=ACTIVE_STATUSES,
            target_id=target_id,
            types=frozenset(types) if types is not None else None,
        )

    def completed_unnotified_filter(self, owner_id: str) -> TaskFilter:
        return TaskFilter(owner_id=owner_id, statuses=TERMINAL_STATUSES, notification_shown=False)

    def recent_filter(self, owner_id: str, limit: int | None = None) -> TaskFilter:
        # Retention is a read-side filter; old records are never deleted here.
        return TaskFilter(
            owner_id=owner_id, created_after=utc_now() - self.recent_window, limit=limit
        )

    def query(self, task_filter: TaskFilter) -> list[TaskRecord]:
        return self.store.query(task_filter)

    # ---------------------------
    # Subscriptions
    # ---------------------------
    def subscribe_active_tasks(self, owner_id: str, callback: SnapshotCallback) -> str:
        return self.store.subscribe_query(self.active_filter(owner_id), callback)

    def subscribe_completed_unnotified_tasks(self, owner_id: str, callback: SnapshotCallback) -> str:
        return self.store.subscribe_query(self.completed_unnotified_filter(owner_id), callback)

    def subscribe_recent_tasks(
        self, owner_id: str, callback: SnapshotCallback, limit: int | None = None
    ) -> str:
        return self.store.subscribe_query(self.recent_filter(owner_id, limit), callback)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.store.unsubscribe(subscription_id)
