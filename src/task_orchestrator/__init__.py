"""task_orchestrator - Durable background tasks for AI-generated artifacts."""

from .common.memory_store import InMemoryTaskStore
from .common.mqtt_store import MQTTChangeFeedStore
from .common.schema_task_record import (
    TaskCreatedResponse,
    TaskFilter,
    TaskRecord,
    TaskRecordUpdate,
    TaskStatus,
    TaskType,
)
from .common.task_store import TaskStore
from .common.transform_module import TransformModule
from .config import Settings, get_settings
from .errors import (
    GenerationError,
    InvalidInputError,
    InvalidTransitionError,
    MissingCredentialError,
    NotificationDeliveryError,
    NotificationNotFoundError,
    ResumptionDataMissingError,
    TaskError,
    TaskNotFoundError,
    TransformationError,
)
from .generation import ArtifactGenerator, HTTPArtifactGenerator
from .lifecycle import TaskLifecycleManager
from .notification_center import NotificationCenter, NotificationCenterSink, NotificationEntry
from .notifications import (
    BroadcastSink,
    CallbackSink,
    NotificationDispatcher,
    NotificationSink,
    TaskNotification,
)
from .orchestrator import TaskOrchestrator
from .query import ActiveTaskQueryService
from .routes import create_task_router
from .task_store_adapter import TaskStoreAdapter
from .utils.mqtt import (
    BroadcasterBase,
    MQTTBroadcaster,
    NoOpBroadcaster,
    get_broadcaster,
    shutdown_broadcaster,
)
from .worker import Worker, get_task_registry

__version__ = "0.1.0"

__all__ = [
    "TaskRecord",
    "TaskRecordUpdate",
    "TaskFilter",
    "TaskStatus",
    "TaskType",
    "TaskCreatedResponse",
    "TaskStore",
    "InMemoryTaskStore",
    "MQTTChangeFeedStore",
    "TaskStoreAdapter",
    "TransformModule",
    "TaskLifecycleManager",
    "ActiveTaskQueryService",
    "Worker",
    "get_task_registry",
    "NotificationDispatcher",
    "NotificationSink",
    "CallbackSink",
    "BroadcastSink",
    "TaskNotification",
    "NotificationCenter",
    "NotificationCenterSink",
    "NotificationEntry",
    "TaskOrchestrator",
    "create_task_router",
    "ArtifactGenerator",
    "HTTPArtifactGenerator",
    "Settings",
    "get_settings",
    "TaskError",
    "InvalidInputError",
    "InvalidTransitionError",
    "TaskNotFoundError",
    "TransformationError",
    "GenerationError",
    "MissingCredentialError",
    "ResumptionDataMissingError",
    "NotificationDeliveryError",
    "NotificationNotFoundError",
    "__version__",
    "BroadcasterBase",
    "MQTTBroadcaster",
    "NoOpBroadcaster",
    "get_broadcaster",
    "shutdown_broadcaster",
]
