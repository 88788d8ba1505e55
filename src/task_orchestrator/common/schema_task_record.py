from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, JsonValue

InputSnapshotRecord = dict[str, JsonValue]
TaskResultRecord = dict[str, JsonValue]
TaskMetaRecord = dict[str, JsonValue]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def task_key(owner_id: str, task_id: str) -> str:
    """Store key of a task. Every key is scoped per owner."""
    return f"users/{owner_id}/background_tasks/{task_id}"


class TaskStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({TaskStatus.pending, TaskStatus.in_progress})
TERMINAL_STATUSES = frozenset({TaskStatus.completed, TaskStatus.failed})


class TaskType(str, Enum):
    cv_rewrite = "cv_rewrite"
    ats_analysis = "ats_analysis"
    cover_letter = "cover_letter"

    @property
    def label(self) -> str:
        return TASK_TYPE_LABELS[self]


TASK_TYPE_LABELS: dict[TaskType, str] = {
    TaskType.cv_rewrite: "CV rewrite",
    TaskType.ats_analysis: "ATS analysis",
    TaskType.cover_letter: "Cover letter",
}


class TaskRecord(BaseModel):
    """Persisted task representation (store / wire format)."""

    id: str
    owner_id: str
    type: TaskType

    status: TaskStatus = TaskStatus.pending
    progress: int = Field(0, ge=0, le=100)
    step: int = 0
    step_label: str | None = None

    target_id: str | None = None
    input_snapshot: InputSnapshotRecord | None = None
    meta: TaskMetaRecord = Field(default_factory=dict)

    result: TaskResultRecord | None = None
    error: str | None = None
    notification_shown: bool = False

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    @property
    def key(self) -> str:
        return task_key(self.owner_id, self.id)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class TaskRecordUpdate(BaseModel):
    """Partial write. Identity fields and the input snapshot are not writable."""

    status: TaskStatus | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    step: int | None = None
    step_label: str | None = None
    result: TaskResultRecord | None = None
    error: str | None = None
    notification_shown: bool | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


class TaskFilter(BaseModel):
    """Query over task records. Unset fields do not constrain the result."""

    owner_id: str | None = None
    statuses: frozenset[TaskStatus] | None = None
    types: frozenset[TaskType] | None = None
    target_id: str | None = None
    notification_shown: bool | None = None
    created_after: datetime | None = None
    limit: int | None = Field(default=None, gt=0)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    def matches(self, record: TaskRecord) -> bool:
        if self.owner_id is not None and record.owner_id != self.owner_id:
            return False
        if self.statuses is not None and record.status not in self.statuses:
            return False
        if self.types is not None and record.type not in self.types:
            return False
        if self.target_id is not None and record.target_id != self.target_id:
            return False
        if (
            self.notification_shown is not None
            and record.notification_shown != self.notification_shown
        ):
            return False
        if self.created_after is not None and record.created_at < self.created_after:
            return False
        return True

    def apply(self, records: list[TaskRecord]) -> list[TaskRecord]:
        """Filter, order by creation time and truncate."""
        selected = sorted(
            (r for r in records if self.matches(r)), key=lambda r: (r.created_at, r.id)
        )
        if self.limit is not None:
            selected = selected[: self.limit]
        return selected


class TaskCreatedResponse(BaseModel):
    task_id: str
    status: TaskStatus
    task_type: TaskType
    created: bool
