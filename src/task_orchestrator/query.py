"""Active-task lookups used before submitting new work."""

from .common.schema_task_record import TaskRecord, TaskType
from .task_store_adapter import TaskStoreAdapter


class ActiveTaskQueryService:
    """Answers "is something already running for this target?".

    The answer is advisory: a caller that checks and then creates is not
    atomic with respect to other processes doing the same.
    """

    def __init__(self, adapter: TaskStoreAdapter):
        self.adapter: TaskStoreAdapter = adapter

    def find_active(self, owner_id: str, target_id: str, task_type: TaskType | str) -> TaskRecord | None:
        """Return the oldest pending or in-progress task for (owner, target, type)."""
        task_filter = self.adapter.active_filter(
            owner_id, target_id=target_id, types=[TaskType(task_type)]
        )
        matches = self.adapter.query(task_filter)
        return matches[0] if matches else None

    def list_active(self, owner_id: str, task_types: list[TaskType] | None = None) -> list[TaskRecord]:
        return self.adapter.query(self.adapter.active_filter(owner_id, types=task_types))
