"""Task lifecycle manager - the task state machine.

pending -> in_progress -> completed | failed

Terminal records never change again except for the notification flag.
Each operation reads the record, checks the transition and writes the
change under a process-local lock. The store offers no conditional writes,
so two processes writing the same task can still interleave.
"""

import copy
import threading
import time
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, JsonValue, ValidationError

from .common.schema_task_record import (
    TaskRecord,
    TaskResultRecord,
    TaskStatus,
    TaskType,
)
from .common.transform_module import TransformModule
from .errors import InvalidInputError, InvalidTransitionError, TaskNotFoundError
from .task_store_adapter import TaskStoreAdapter

# Progress below 100 while running; only complete() reaches 100.
MAX_RUNNING_PROGRESS = 99


def generate_task_id(task_type: TaskType) -> str:
    return f"{task_type.value}_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


class TaskLifecycleManager:
    def __init__(
        self,
        adapter: TaskStoreAdapter,
        registry: Mapping[TaskType, TransformModule[BaseModel, BaseModel]] | None = None,
    ):
        self.adapter: TaskStoreAdapter = adapter
        self.registry: Mapping[TaskType, TransformModule[BaseModel, BaseModel]] = registry or {}
        self._lock: threading.RLock = threading.RLock()

    def create(
        self,
        owner_id: str,
        task_type: TaskType | str,
        target_id: str | None,
        input_snapshot: Mapping[str, Any] | None,
        meta: Mapping[str, JsonValue] | None = None,
    ) -> str:
        """Validate and persist a new pending task.

        Raises:
            InvalidInputError: before any store write, if a required field is
                missing or the snapshot does not fit the task type's schema
        """
        if not owner_id:
            raise InvalidInputError("owner_id")
        try:
            task_type = TaskType(task_type)
        except ValueError as e:
            raise InvalidInputError("type", f"'{task_type}' is not a known task type") from e

        module = self.registry.get(task_type)
        requires_target = module.requires_target if module is not None else True
        requires_input = module.requires_input if module is not None else True

        if requires_target and not target_id:
            raise InvalidInputError("target_id")
        if requires_input and not input_snapshot:
            raise InvalidInputError("input_snapshot")

        if module is not None and input_snapshot:
            try:
                _ = module.validate_input(input_snapshot)
            except ValidationError as e:
                raise InvalidInputError(
                    "input_snapshot", f"does not match {task_type.value} input ({e.error_count()} errors)"
                ) from e

        try:
            record = TaskRecord(
                id=generate_task_id(task_type),
                owner_id=owner_id,
                type=task_type,
                status=TaskStatus.pending,
                progress=0,
                target_id=target_id or None,
                input_snapshot=copy.deepcopy(dict(input_snapshot)) if input_snapshot else None,
                meta=dict(meta or {}),
            )
        except ValidationError as e:
            raise InvalidInputError("input_snapshot", "is not JSON-serialisable") from e

        _ = self.adapter.create(record)
        logger.info(f"Task {record.id} created for owner={owner_id} target={target_id}")
        return record.id

    def get(self, owner_id: str, task_id: str) -> TaskRecord:
        record = self.adapter.get(owner_id, task_id)
        if record is None:
            raise TaskNotFoundError(task_id)
        return record

    def update_progress(
        self,
        owner_id: str,
        task_id: str,
        progress: int,
        step: int = 0,
        step_label: str | None = None,
    ) -> TaskRecord:
        """Checkpoint a running task.

        The written progress never goes below the stored value. A pending task
        moves to in_progress.
        """
        with self._lock:
            current = self._require_active(owner_id, task_id, "update progress of")
            written = max(current.progress, min(MAX_RUNNING_PROGRESS, max(0, progress)))
            status = TaskStatus.in_progress if current.status == TaskStatus.pending else None
            record = self.adapter.update_progress(
                owner_id, task_id, progress=written, step=step, step_label=step_label, status=status
            )
        if record is None:
            raise TaskNotFoundError(task_id)
        logger.debug(f"Task {task_id} progress={written} step={step} ({step_label})")
        return record

    def complete(self, owner_id: str, task_id: str, result: TaskResultRecord | None = None) -> TaskRecord:
        with self._lock:
            _ = self._require_active(owner_id, task_id, "complete")
            record = self.adapter.complete(owner_id, task_id, dict(result or {"success": True}))
        if record is None:
            raise TaskNotFoundError(task_id)
        logger.info(f"Task {task_id} completed")
        return record

    def fail(self, owner_id: str, task_id: str, error_message: str) -> TaskRecord:
        with self._lock:
            _ = self._require_active(owner_id, task_id, "fail")
            record = self.adapter.fail(owner_id, task_id, error_message or "failed")
        if record is None:
            raise TaskNotFoundError(task_id)
        logger.info(f"Task {task_id} failed: {error_message}")
        return record

    def mark_notified(self, owner_id: str, task_id: str) -> TaskRecord:
        """Set notification_shown. Calling it again is a no-op."""
        with self._lock:
            current = self.get(owner_id, task_id)
            if current.notification_shown:
                return current
            record = self.adapter.mark_notified(owner_id, task_id)
        if record is None:
            raise TaskNotFoundError(task_id)
        return record

    def _require_active(self, owner_id: str, task_id: str, action: str) -> TaskRecord:
        current = self.get(owner_id, task_id)
        if current.is_terminal:
            raise InvalidTransitionError(task_id, current.status.value, action)
        return current
