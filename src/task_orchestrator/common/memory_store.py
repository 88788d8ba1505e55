"""In-memory TaskStore with query subscriptions."""

import threading
from typing import override
from uuid import uuid4

from loguru import logger

from .schema_task_record import TaskFilter, TaskRecord, TaskRecordUpdate
from .task_store import SnapshotCallback, TaskStore


class InMemoryTaskStore(TaskStore):
    """Thread-safe in-memory store.

    Writes are serialised under one lock. Subscription callbacks run after the
    lock is released, on the writing thread, and receive deep copies.
    """

    def __init__(self):
        self._records: dict[str, TaskRecord] = {}
        self._subscriptions: dict[str, tuple[TaskFilter, SnapshotCallback]] = {}
        self._last_snapshots: dict[str, list[TaskRecord]] = {}
        self._lock: threading.RLock = threading.RLock()

    @override
    def put(self, key: str, record: TaskRecord) -> None:
        with self._lock:
            self._records[key] = record.model_copy(deep=True)
        self._notify()

    @override
    def update(self, key: str, updates: TaskRecordUpdate) -> TaskRecord | None:
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return None
            merged = current.model_copy(update=updates.model_dump(exclude_none=True), deep=True)
            self._records[key] = merged
            result = merged.model_copy(deep=True)
        self._notify()
        return result

    @override
    def get(self, key: str) -> TaskRecord | None:
        with self._lock:
            record = self._records.get(key)
            return record.model_copy(deep=True) if record is not None else None

    @override
    def query(self, task_filter: TaskFilter) -> list[TaskRecord]:
        with self._lock:
            return [r.model_copy(deep=True) for r in task_filter.apply(list(self._records.values()))]

    @override
    def subscribe_query(self, task_filter: TaskFilter, callback: SnapshotCallback) -> str:
        subscription_id = str(uuid4())
        with self._lock:
            self._subscriptions[subscription_id] = (task_filter, callback)
            snapshot = self.query(task_filter)
            self._last_snapshots[subscription_id] = snapshot
        logger.debug(f"Store subscription {subscription_id} created for {task_filter}")
        self._deliver(subscription_id, callback, snapshot)
        return subscription_id

    @override
    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            _ = self._last_snapshots.pop(subscription_id, None)
            return self._subscriptions.pop(subscription_id, None) is not None

    def _notify(self) -> None:
        pending: list[tuple[str, SnapshotCallback, list[TaskRecord]]] = []
        with self._lock:
            for subscription_id, (task_filter, callback) in self._subscriptions.items():
                snapshot = self.query(task_filter)
                if snapshot == self._last_snapshots.get(subscription_id):
                    continue
                self._last_snapshots[subscription_id] = snapshot
                pending.append((subscription_id, callback, snapshot))

        for subscription_id, callback, snapshot in pending:
            self._deliver(subscription_id, callback, snapshot)

    @staticmethod
    def _deliver(subscription_id: str, callback: SnapshotCallback, snapshot: list[TaskRecord]) -> None:
        try:
            callback(snapshot)
        except Exception as callback_error:
            logger.error(
                f"Error in callback for store subscription {subscription_id}: {callback_error}"
            )
