"""TaskStore Protocol - interface for the external document store."""

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from .schema_task_record import TaskFilter, TaskRecord, TaskRecordUpdate

SnapshotCallback = Callable[[list[TaskRecord]], None]


@runtime_checkable
class TaskStore(Protocol):
    """Protocol for task persistence with query-change subscriptions.

    Applications implement this protocol on top of their document store.
    Only get/put/update-by-key and a subscribe-to-query primitive are needed;
    no transactional guarantees are assumed. Subscriptions may deliver the
    same snapshot more than once.
    """

    def put(self, key: str, record: TaskRecord) -> None:
        """Write a full record under key, replacing any previous one."""
        ...

    def update(self, key: str, updates: TaskRecordUpdate) -> TaskRecord | None:
        """Merge the non-None fields of updates into the record under key.

        Returns:
            The updated record, or None if no record exists under key
        """
        ...

    def get(self, key: str) -> TaskRecord | None:
        """Get the record stored under key."""
        ...

    def query(self, task_filter: TaskFilter) -> list[TaskRecord]:
        """Return the records matching the filter, oldest first."""
        ...

    def subscribe_query(self, task_filter: TaskFilter, callback: SnapshotCallback) -> str:
        """Subscribe to the result set of a query.

        The callback receives the current snapshot immediately and again after
        every write that changes the result set.

        Returns:
            Subscription ID to pass to unsubscribe()
        """
        ...

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False for unknown IDs."""
        ...
