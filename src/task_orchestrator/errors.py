"""Error taxonomy for task orchestration."""


class TaskError(Exception):
    """Base class for task orchestration errors."""


class InvalidInputError(TaskError):
    def __init__(self, field: str, reason: str = "is required"):
        self.field: str = field
        super().__init__(f"Invalid task input: '{field}' {reason}")


class InvalidTransitionError(TaskError):
    """Raised when a write targets a task that is already terminal."""

    def __init__(self, task_id: str, status: str, action: str):
        self.task_id: str = task_id
        self.status: str = status
        self.action: str = action
        super().__init__(f"Cannot {action} task '{task_id}': already {status}")


class TaskNotFoundError(TaskError):
    def __init__(self, task_id: str):
        self.task_id: str = task_id
        super().__init__(f"Task '{task_id}' not found")


class TransformationError(TaskError):
    """The work function for a task failed."""


class GenerationError(TransformationError):
    """The AI generation endpoint reported a failure."""


class MissingCredentialError(TransformationError):
    """No credential is configured for the AI generation endpoint."""


class ResumptionDataMissingError(TaskError):
    def __init__(self, task_id: str, detail: str | None = None):
        self.task_id: str = task_id
        message = f"Task '{task_id}' has no usable input snapshot"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotificationDeliveryError(TaskError):
    def __init__(self, task_id: str, cause: Exception):
        self.task_id: str = task_id
        self.cause: Exception = cause
        super().__init__(f"Failed to mark task '{task_id}' as notified: {cause}")


class NotificationNotFoundError(TaskError):
    def __init__(self, notification_id: str):
        self.notification_id: str = notification_id
        super().__init__(f"Notification '{notification_id}' not found")
