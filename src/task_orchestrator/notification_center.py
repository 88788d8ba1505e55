"""Notification center - stored task notifications with a read flag."""

import threading
from datetime import datetime
from typing import ClassVar, override
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .common.schema_task_record import utc_now
from .errors import NotificationNotFoundError
from .notifications import NotificationSink, TaskNotification
from .utils.mqtt import BroadcasterBase


class NotificationEntry(BaseModel):
    """One stored notification, as listed in a user's notification center."""

    id: str
    owner_id: str
    notification: TaskNotification
    read: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    @property
    def key(self) -> str:
        return notification_key(self.owner_id, self.id)


def notification_key(owner_id: str, entry_id: str) -> str:
    return f"users/{owner_id}/notifications/{entry_id}"


class NotificationCenter:
    """Per-owner notification entries that stay until deleted.

    With a broadcaster, every entry is also kept as a retained message on
    ``{prefix}/users/{owner_id}/notifications/{id}`` and entries written by
    other processes are merged in, newest ``updated_at`` wins. Deleting an
    entry clears its retained message.
    """

    def __init__(self, broadcaster: BroadcasterBase | None = None, topic_prefix: str = "task_orchestrator"):
        self.broadcaster: BroadcasterBase | None = broadcaster
        self.topic_prefix: str = topic_prefix.rstrip("/")
        self._entries: dict[str, NotificationEntry] = {}
        self._lock: threading.RLock = threading.RLock()
        self._feed_subscription: str | None = None

    def topic_for(self, owner_id: str, entry_id: str) -> str:
        return f"{self.topic_prefix}/{notification_key(owner_id, entry_id)}"

    def start(self) -> bool:
        """Start merging entries from other processes."""
        if self.broadcaster is None:
            return False
        if self._feed_subscription is not None:
            return True
        self._feed_subscription = self.broadcaster.subscribe(
            topic=f"{self.topic_prefix}/users/+/notifications/+", callback=self._on_remote_entry
        )
        return self._feed_subscription is not None

    def stop(self) -> None:
        if self.broadcaster is not None and self._feed_subscription is not None:
            _ = self.broadcaster.unsubscribe(self._feed_subscription)
            self._feed_subscription = None

    def add(self, notification: TaskNotification) -> NotificationEntry:
        entry = NotificationEntry(
            id=f"notif_{uuid4().hex[:12]}",
            owner_id=notification.owner_id,
            notification=notification,
        )
        with self._lock:
            self._entries[entry.key] = entry
        self._publish(entry)
        logger.info(f"Notification {entry.id} stored for owner={entry.owner_id} task={notification.task_id}")
        return entry.model_copy(deep=True)

    def get(self, owner_id: str, entry_id: str) -> NotificationEntry:
        with self._lock:
            entry = self._entries.get(notification_key(owner_id, entry_id))
            if entry is None:
                raise NotificationNotFoundError(entry_id)
            return entry.model_copy(deep=True)

    def list_entries(
        self, owner_id: str, *, unread_only: bool = False, limit: int | None = None
    ) -> list[NotificationEntry]:
        """Entries of owner_id, newest first."""
        with self._lock:
            entries = [
                e.model_copy(deep=True)
                for e in reversed(self._entries.values())
                if e.owner_id == owner_id and not (unread_only and e.read)
            ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit] if limit is not None else entries

    def unread_count(self, owner_id: str) -> int:
        return len(self.list_entries(owner_id, unread_only=True))

    def mark_read(self, owner_id: str, entry_id: str) -> NotificationEntry:
        """Set the read flag. Marking an entry twice is a no-op."""
        with self._lock:
            entry = self._entries.get(notification_key(owner_id, entry_id))
            if entry is None:
                raise NotificationNotFoundError(entry_id)
            if entry.read:
                return entry.model_copy(deep=True)
            entry = entry.model_copy(update={"read": True, "updated_at": utc_now()})
            self._entries[entry.key] = entry
        self._publish(entry)
        return entry.model_copy(deep=True)

    def mark_all_read(self, owner_id: str) -> int:
        unread = self.list_entries(owner_id, unread_only=True)
        for entry in unread:
            _ = self.mark_read(owner_id, entry.id)
        return len(unread)

    def delete(self, owner_id: str, entry_id: str) -> bool:
        with self._lock:
            entry = self._entries.pop(notification_key(owner_id, entry_id), None)
        if entry is None:
            return False
        if self.broadcaster is not None:
            _ = self.broadcaster.clear_retained(self.topic_for(owner_id, entry_id))
        return True

    def _publish(self, entry: NotificationEntry) -> None:
        if self.broadcaster is None:
            return
        published = self.broadcaster.publish_retained(
            topic=self.topic_for(entry.owner_id, entry.id), payload=entry.model_dump_json()
        )
        if not published:
            logger.warning(f"Notification {entry.id} was not published to MQTT")

    def _on_remote_entry(self, topic: str, payload: str) -> None:
        if not payload:
            # users/{owner_id}/notifications/{id} with the prefix in front
            parts = topic.split("/")
            with self._lock:
                _ = self._entries.pop(notification_key(parts[-3], parts[-1]), None)
            return
        try:
            remote = NotificationEntry.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed notification on {topic}: {e}")
            return
        with self._lock:
            local = self._entries.get(remote.key)
            if local is None or remote.updated_at > local.updated_at:
                self._entries[remote.key] = remote


class NotificationCenterSink(NotificationSink):
    """Stores every notification in a NotificationCenter."""

    def __init__(self, center: NotificationCenter):
        self.center: NotificationCenter = center

    @override
    def emit(self, notification: TaskNotification) -> None:
        _ = self.center.add(notification)
