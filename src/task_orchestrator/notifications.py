"""Notification dispatcher - one user-facing event per finished task."""

import threading
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import ClassVar, Literal, Protocol, override

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .common.schema_task_record import TaskRecord, TaskStatus, TaskType, utc_now
from .errors import NotificationDeliveryError
from .lifecycle import TaskLifecycleManager
from .utils.mqtt import BroadcasterBase

SUCCESS_HEADLINES: dict[TaskType, str] = {
    TaskType.cv_rewrite: "CV Optimized Successfully",
    TaskType.ats_analysis: "ATS Analysis Complete",
    TaskType.cover_letter: "Cover Letter Generated",
}

SUCCESS_MESSAGES: dict[TaskType, tuple[str, str]] = {
    # (with job title and company, generic)
    TaskType.cv_rewrite: (
        "Your CV for {title} at {company} is ready",
        "Your optimized CV is ready to download",
    ),
    TaskType.ats_analysis: (
        "Analysis for {title} at {company} is complete",
        "Your ATS analysis results are ready",
    ),
    TaskType.cover_letter: (
        "Cover letter for {title} at {company} is ready",
        "Your cover letter has been generated",
    ),
}


class TaskNotification(BaseModel):
    """User-facing event for a task that reached a terminal state."""

    kind: Literal["success", "error"]
    owner_id: str
    task_id: str
    type: TaskType
    target_id: str | None = None
    title: str | None = None
    company: str | None = None

    headline: str
    message: str
    action_url: str | None = None
    action_label: str | None = None
    priority: Literal["high", "medium", "low"] = "high"
    created_at: datetime = Field(default_factory=utc_now)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


def _meta_str(task: TaskRecord, *keys: str) -> str | None:
    for key in keys:
        value = task.meta.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def build_notification(task: TaskRecord) -> TaskNotification:
    title = _meta_str(task, "title", "job_title")
    company = _meta_str(task, "company", "company_name")

    if task.status == TaskStatus.completed:
        detailed, generic = SUCCESS_MESSAGES[task.type]
        message = detailed.format(title=title, company=company) if title and company else generic
        return TaskNotification(
            kind="success",
            owner_id=task.owner_id,
            task_id=task.id,
            type=task.type,
            target_id=task.target_id,
            title=title,
            company=company,
            headline=SUCCESS_HEADLINES[task.type],
            message=message,
            action_url=f"/ats-analysis/{task.target_id}" if task.target_id else None,
            action_label="View Result",
        )

    return TaskNotification(
        kind="error",
        owner_id=task.owner_id,
        task_id=task.id,
        type=task.type,
        target_id=task.target_id,
        title=title,
        company=company,
        headline=f"{task.type.label} failed",
        message=task.error or "Something went wrong",
    )


class NotificationSink(Protocol):
    def emit(self, notification: TaskNotification) -> None: ...


class CallbackSink(NotificationSink):
    """Hands notifications to an in-process callable (toast UI, tests)."""

    def __init__(self, callback: Callable[[TaskNotification], None]):
        self.callback: Callable[[TaskNotification], None] = callback

    @override
    def emit(self, notification: TaskNotification) -> None:
        self.callback(notification)


class BroadcastSink(NotificationSink):
    """Publishes notifications as JSON on {prefix}/users/{owner_id}/notifications."""

    def __init__(self, broadcaster: BroadcasterBase, topic_prefix: str = "task_orchestrator"):
        self.broadcaster: BroadcasterBase = broadcaster
        self.topic_prefix: str = topic_prefix.rstrip("/")

    def topic_for(self, owner_id: str) -> str:
        return f"{self.topic_prefix}/users/{owner_id}/notifications"

    @override
    def emit(self, notification: TaskNotification) -> None:
        published = self.broadcaster.publish_event(
            topic=self.topic_for(notification.owner_id), payload=notification.model_dump_json()
        )
        if not published:
            logger.warning(f"Notification for task {notification.task_id} was not published")


class NotificationDispatcher:
    """Emits one notification per terminal task, then flags the task.

    Two layers of dedup:
    - an in-process set of handled task IDs per owner, against repeated
      deliveries of the same store snapshot
    - the persisted notification_shown flag, against other sessions of the
      same owner picking the task up
    stop(owner_id) forgets the owner's handled tasks whose flag was written,
    so the set is bounded by the open sessions. Tasks whose flag write failed
    stay handled; they may be notified again in a later process, never twice
    in this one.
    """

    def __init__(self, lifecycle: TaskLifecycleManager, sinks: Sequence[NotificationSink]):
        self.lifecycle: TaskLifecycleManager = lifecycle
        self.sinks: list[NotificationSink] = list(sinks)
        self._handled: dict[str, set[str]] = {}
        self._unflagged: set[str] = set()
        self._handled_lock: threading.Lock = threading.Lock()
        self._subscriptions: dict[str, str] = {}

    def start(self, owner_id: str) -> str:
        """Subscribe to owner_id's finished, unnotified tasks."""
        if owner_id in self._subscriptions:
            return self._subscriptions[owner_id]
        subscription_id = self.lifecycle.adapter.subscribe_completed_unnotified_tasks(
            owner_id, self.handle_snapshot
        )
        self._subscriptions[owner_id] = subscription_id
        logger.info(f"Notification dispatcher started for owner={owner_id}")
        return subscription_id

    def stop(self, owner_id: str | None = None) -> None:
        owners = [owner_id] if owner_id is not None else list(self._subscriptions)
        for owner in owners:
            subscription_id = self._subscriptions.pop(owner, None)
            if subscription_id is not None:
                _ = self.lifecycle.adapter.unsubscribe(subscription_id)
            with self._handled_lock:
                handled = self._handled.pop(owner, set())
                kept = handled & self._unflagged
                if kept:
                    self._handled[owner] = kept

    def was_handled(self, task_id: str) -> bool:
        with self._handled_lock:
            return any(task_id in handled for handled in self._handled.values())

    def handle_snapshot(self, tasks: list[TaskRecord]) -> list[TaskNotification]:
        emitted: list[TaskNotification] = []
        for task in tasks:
            notification = self.handle_task(task)
            if notification is not None:
                emitted.append(notification)
        return emitted

    def handle_task(self, task: TaskRecord) -> TaskNotification | None:
        if not task.is_terminal or task.notification_shown:
            return None

        with self._handled_lock:
            handled = self._handled.setdefault(task.owner_id, set())
            if task.id in handled:
                logger.debug(f"Task {task.id} already notified in this session")
                return None
            handled.add(task.id)

        notification = build_notification(task)
        for sink in self.sinks:
            try:
                sink.emit(notification)
            except Exception as e:
                logger.error(f"Notification sink {type(sink).__name__} failed for task {task.id}: {e}")

        try:
            _ = self.lifecycle.mark_notified(task.owner_id, task.id)
        except Exception as e:
            logger.warning(str(NotificationDeliveryError(task.id, e)))
            with self._handled_lock:
                self._unflagged.add(task.id)

        return notification
