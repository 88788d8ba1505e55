"""Facade wiring store, lifecycle, worker, queries and notifications."""

import asyncio
import threading
from collections.abc import Callable, Mapping, Sequence
from datetime import timedelta
from typing import Any

from loguru import logger
from pydantic import JsonValue

from .common.memory_store import InMemoryTaskStore
from .common.mqtt_store import MQTTChangeFeedStore
from .common.schema_task_record import TaskRecord, TaskType
from .common.task_store import SnapshotCallback, TaskStore
from .common.transform_module import ResultSink
from .config import Settings, get_settings
from .errors import TaskNotFoundError
from .generation import HTTPArtifactGenerator
from .lifecycle import TaskLifecycleManager
from .notification_center import NotificationCenter, NotificationCenterSink
from .notifications import (
    BroadcastSink,
    CallbackSink,
    NotificationDispatcher,
    NotificationSink,
    TaskNotification,
)
from .query import ActiveTaskQueryService
from .task_store_adapter import TaskStoreAdapter
from .utils.mqtt import get_broadcaster
from .worker import TaskRegistry, Worker, get_task_registry


class TaskOrchestrator:
    """Entry point for callers.

    submit() performs the check-then-create sequence under a process-local
    lock and starts the worker. open_session() resumes the owner's unfinished
    tasks and starts notification delivery for them. Over an
    MQTTChangeFeedStore, unfinished records the broker replays after the
    session opened are resumed as they arrive.
    """

    def __init__(
        self,
        store: TaskStore,
        task_registry: TaskRegistry,
        sinks: Sequence[NotificationSink] = (),
        recent_window: timedelta = timedelta(hours=24),
        resume_on_start: bool = True,
        notification_center: NotificationCenter | None = None,
    ):
        self.store: TaskStore = store
        self.adapter: TaskStoreAdapter = TaskStoreAdapter(store, recent_window)
        self.lifecycle: TaskLifecycleManager = TaskLifecycleManager(self.adapter, task_registry)
        self.worker: Worker = Worker(self.lifecycle, task_registry)
        self.query: ActiveTaskQueryService = ActiveTaskQueryService(self.adapter)
        self.notification_center: NotificationCenter | None = notification_center
        all_sinks = list(sinks)
        if notification_center is not None:
            all_sinks.append(NotificationCenterSink(notification_center))
        self.dispatcher: NotificationDispatcher = NotificationDispatcher(self.lifecycle, all_sinks)
        self.resume_on_start: bool = resume_on_start
        self._submit_lock: threading.Lock = threading.Lock()
        # owner_id -> loop of the open session that resumes the owner's tasks
        self._sessions: dict[str, asyncio.AbstractEventLoop] = {}

        if isinstance(store, MQTTChangeFeedStore):
            store.add_recovery_listener(self._on_recovered_task)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        result_sink: ResultSink | None = None,
        on_notification: Callable[[TaskNotification], None] | None = None,
    ) -> "TaskOrchestrator":
        """Build the default stack: in-memory store shared over MQTT,
        HTTP generator, entry-point task modules and a notification center."""
        settings = settings or get_settings()
        broadcaster = get_broadcaster(settings.mqtt_url)

        store = MQTTChangeFeedStore(InMemoryTaskStore(), broadcaster, settings.mqtt_topic_prefix)
        center = NotificationCenter(broadcaster, settings.mqtt_topic_prefix)
        _ = center.start()

        generator = HTTPArtifactGenerator.from_settings(settings)
        registry = get_task_registry(generator, result_sink)

        sinks: list[NotificationSink] = [BroadcastSink(broadcaster, settings.mqtt_topic_prefix)]
        if on_notification is not None:
            sinks.append(CallbackSink(on_notification))

        orchestrator = cls(
            store,
            registry,
            sinks,
            recent_window=timedelta(hours=settings.recent_window_hours),
            resume_on_start=settings.resume_on_start,
            notification_center=center,
        )
        # Started after the recovery listener is registered.
        _ = store.start()
        return orchestrator

    async def submit(
        self,
        owner_id: str,
        task_type: TaskType | str,
        target_id: str | None,
        input_snapshot: Mapping[str, Any] | None,
        meta: Mapping[str, JsonValue] | None = None,
        *,
        start: bool = True,
    ) -> tuple[TaskRecord, bool]:
        """Create and start a task unless one is already active for the target.

        Returns:
            (task, created) - the existing active task and False, or the new
            task and True

        Raises:
            InvalidInputError: If the task cannot be created
        """
        with self._submit_lock:
            existing = (
                self.query.find_active(owner_id, target_id, task_type) if target_id else None
            )
            if existing is not None:
                logger.info(f"Task {existing.id} already active for target={target_id}; not creating")
                return existing, False
            task_id = self.lifecycle.create(owner_id, task_type, target_id, input_snapshot, meta)

        if start:
            _ = self.worker.start(owner_id, task_id)
        return self.lifecycle.get(owner_id, task_id), True

    def find_active(self, owner_id: str, target_id: str, task_type: TaskType | str) -> TaskRecord | None:
        return self.query.find_active(owner_id, target_id, task_type)

    async def open_session(self, owner_id: str) -> list[asyncio.Task[bool]]:
        _ = self.dispatcher.start(owner_id)
        if not self.resume_on_start:
            return []
        self._sessions[owner_id] = asyncio.get_running_loop()
        return await self.worker.resume(owner_id)

    def close_session(self, owner_id: str) -> None:
        _ = self._sessions.pop(owner_id, None)
        self.dispatcher.stop(owner_id)

    async def shutdown(self) -> None:
        self._sessions.clear()
        self.dispatcher.stop()
        await self.worker.drain()
        if isinstance(self.store, MQTTChangeFeedStore):
            self.store.stop()
        if self.notification_center is not None:
            self.notification_center.stop()

    def _on_recovered_task(self, task: TaskRecord) -> None:
        """Called from the broker thread with a record replayed after start."""
        loop = self._sessions.get(task.owner_id)
        if loop is None or loop.is_closed():
            return
        _ = loop.call_soon_threadsafe(self._resume_recovered, task.owner_id, task.id)

    def _resume_recovered(self, owner_id: str, task_id: str) -> None:
        if owner_id not in self._sessions:
            return
        try:
            task = self.lifecycle.get(owner_id, task_id)
        except TaskNotFoundError:
            return
        _ = self.worker.resume_task(task)

    # ---------------------------
    # Subscriptions for UI widgets
    # ---------------------------
    def subscribe_active(self, owner_id: str, callback: SnapshotCallback) -> str:
        return self.adapter.subscribe_active_tasks(owner_id, callback)

    def subscribe_unnotified(self, owner_id: str, callback: SnapshotCallback) -> str:
        return self.adapter.subscribe_completed_unnotified_tasks(owner_id, callback)

    def subscribe_recent(self, owner_id: str, callback: SnapshotCallback, limit: int | None = None) -> str:
        return self.adapter.subscribe_recent_tasks(owner_id, callback, limit)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.adapter.unsubscribe(subscription_id)
