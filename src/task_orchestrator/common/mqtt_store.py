"""TaskStore decorator that shares task writes between processes over MQTT."""

from collections.abc import Callable
from datetime import datetime
from typing import override

from loguru import logger
from pydantic import ValidationError

from ..utils.mqtt import BroadcasterBase
from .schema_task_record import TaskFilter, TaskRecord, TaskRecordUpdate, utc_now
from .task_store import SnapshotCallback, TaskStore

RecoveryCallback = Callable[[TaskRecord], None]


class MQTTChangeFeedStore(TaskStore):
    """Publish every local write as a retained message and merge remote ones.

    Each record lives on its own retained topic,
    ``{prefix}/users/{owner_id}/tasks/{task_id}``, so a process that starts
    late still receives the latest state of every task. Remote records replace
    the local copy only when their ``updated_at`` is newer; merging a remote
    record fans out to local subscriptions through the wrapped store and is
    never re-published.

    The broker replays retained records after subscribe() has returned.
    Unfinished records last written before start() are reported to recovery
    listeners as they arrive, so they can be resumed late.
    """

    def __init__(self, inner: TaskStore, broadcaster: BroadcasterBase, topic_prefix: str = "task_orchestrator"):
        self.inner: TaskStore = inner
        self.broadcaster: BroadcasterBase = broadcaster
        self.topic_prefix: str = topic_prefix.rstrip("/")
        self._feed_subscription: str | None = None
        self._started_at: datetime | None = None
        self._recovery_listeners: list[RecoveryCallback] = []

    def topic_for(self, record: TaskRecord) -> str:
        return f"{self.topic_prefix}/users/{record.owner_id}/tasks/{record.id}"

    @property
    def feed_topic(self) -> str:
        return f"{self.topic_prefix}/users/+/tasks/+"

    def start(self) -> bool:
        """Start merging remote writes. Returns False if the broker refused."""
        if self._feed_subscription is not None:
            return True
        self._started_at = utc_now()
        self._feed_subscription = self.broadcaster.subscribe(
            topic=self.feed_topic, callback=self._on_remote_record
        )
        if self._feed_subscription is None:
            logger.warning(f"Task change feed not available on {self.feed_topic}")
            return False
        return True

    def stop(self) -> None:
        if self._feed_subscription is not None:
            _ = self.broadcaster.unsubscribe(self._feed_subscription)
            self._feed_subscription = None

    def add_recovery_listener(self, callback: RecoveryCallback) -> None:
        """Call callback with each unfinished record recovered from the broker.

        Runs on the broker's network thread.
        """
        self._recovery_listeners.append(callback)

    @override
    def put(self, key: str, record: TaskRecord) -> None:
        self.inner.put(key, record)
        self._publish(record)

    @override
    def update(self, key: str, updates: TaskRecordUpdate) -> TaskRecord | None:
        record = self.inner.update(key, updates)
        if record is not None:
            self._publish(record)
        return record

    @override
    def get(self, key: str) -> TaskRecord | None:
        return self.inner.get(key)

    @override
    def query(self, task_filter: TaskFilter) -> list[TaskRecord]:
        return self.inner.query(task_filter)

    @override
    def subscribe_query(self, task_filter: TaskFilter, callback: SnapshotCallback) -> str:
        return self.inner.subscribe_query(task_filter, callback)

    @override
    def unsubscribe(self, subscription_id: str) -> bool:
        return self.inner.unsubscribe(subscription_id)

    def _publish(self, record: TaskRecord) -> None:
        published = self.broadcaster.publish_retained(
            topic=self.topic_for(record), payload=record.model_dump_json()
        )
        if not published:
            logger.warning(f"Task {record.id} change was not published to MQTT")

    def _on_remote_record(self, topic: str, payload: str) -> None:
        if not payload:
            return  # cleared retained message
        try:
            remote = TaskRecord.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed task record on {topic}: {e}")
            return

        local = self.inner.get(remote.key)
        if local is not None and local.updated_at >= remote.updated_at:
            return
        logger.debug(f"Merging remote task {remote.id} status={remote.status.value}")
        self.inner.put(remote.key, remote)

        if local is None and self._is_recovered(remote):
            self._notify_recovered(remote)

    def _is_recovered(self, record: TaskRecord) -> bool:
        # Records written by live processes after start() are theirs to run.
        return (
            record.status.is_active
            and self._started_at is not None
            and record.updated_at < self._started_at
        )

    def _notify_recovered(self, record: TaskRecord) -> None:
        for listener in list(self._recovery_listeners):
            try:
                listener(record)
            except Exception:
                logger.exception(f"Recovery listener failed for task {record.id}")
