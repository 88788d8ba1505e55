"""Common module - protocols, schemas, stores and base classes."""

from .memory_store import InMemoryTaskStore
from .mqtt_store import MQTTChangeFeedStore
from .schema_task_record import (
    TaskCreatedResponse,
    TaskFilter,
    TaskRecord,
    TaskRecordUpdate,
    TaskStatus,
    TaskType,
)
from .task_store import TaskStore
from .transform_module import TransformModule

__all__ = [
    "InMemoryTaskStore",
    "MQTTChangeFeedStore",
    "TaskCreatedResponse",
    "TaskFilter",
    "TaskRecord",
    "TaskRecordUpdate",
    "TaskStatus",
    "TaskStore",
    "TaskType",
    "TransformModule",
]
