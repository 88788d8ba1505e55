"""Task route factory for FastAPI."""

from typing import Annotated, Callable, ClassVar, Protocol

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, JsonValue

from .common.schema_task_record import TaskCreatedResponse, TaskRecord, TaskType
from .errors import InvalidInputError, NotificationNotFoundError, TaskNotFoundError
from .notification_center import NotificationEntry
from .orchestrator import TaskOrchestrator


class UserLike(Protocol):
    """Protocol for user objects returned by authentication."""

    id: str | None


class SubmitTaskRequest(BaseModel):
    target_id: str | None = Field(None, description="Resource the task works on")
    input_snapshot: dict[str, JsonValue] | None = Field(
        None, description="Everything the worker needs to (re)run the task"
    )
    meta: dict[str, JsonValue] = Field(
        default_factory=dict, description="Display metadata such as title and company"
    )

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")


class NotificationCount(BaseModel):
    count: int


def _require_owner(user: UserLike | None) -> str:
    if user is None or not user.id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user.id


def create_task_router(
    orchestrator: TaskOrchestrator,
    get_current_user: Callable[[], UserLike | None],
) -> APIRouter:
    """Create router with injected dependencies.

    Args:
        orchestrator: TaskOrchestrator serving the requests
        get_current_user: Callable dependency for authentication.
                          Should return user object or None.

    Returns:
        APIRouter with the task endpoints, plus the notification center
        endpoints when the orchestrator has a notification center. Every
        route is scoped to the current user's id.

    Example:
        app = FastAPI()
        orchestrator = TaskOrchestrator.from_settings()
        app.include_router(create_task_router(orchestrator, get_current_user), prefix="/api")
    """
    router = APIRouter()

    @router.post("/tasks/{task_type}", response_model=TaskCreatedResponse)
    async def submit_task(
        task_type: TaskType,
        body: SubmitTaskRequest,
        response: Response,
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        """Start a task, or return the one already running for the target.

        Returns 201 when a task was created and 200 when an active task
        for the same target and type already exists.
        """
        owner_id = _require_owner(user)
        try:
            task, created = await orchestrator.submit(
                owner_id, task_type, body.target_id, body.input_snapshot, body.meta
            )
        except InvalidInputError as e:
            raise HTTPException(status_code=422, detail=str(e))

        response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
        return TaskCreatedResponse(
            task_id=task.id, status=task.status, task_type=task.type, created=created
        )

    @router.get("/tasks/active", response_model=TaskRecord | None)
    async def find_active_task(
        target_id: Annotated[str, Query(min_length=1)],
        task_type: TaskType,
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        owner_id = _require_owner(user)
        return orchestrator.find_active(owner_id, target_id, task_type)

    @router.get("/tasks/{task_id}", response_model=TaskRecord)
    async def get_task(
        task_id: str,
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        owner_id = _require_owner(user)
        try:
            return orchestrator.lifecycle.get(owner_id, task_id)
        except TaskNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.post("/tasks/{task_id}/notified", response_model=TaskRecord)
    async def mark_task_notified(
        task_id: str,
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        owner_id = _require_owner(user)
        try:
            return orchestrator.lifecycle.mark_notified(owner_id, task_id)
        except TaskNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    # Mark functions as used (accessed via FastAPI decorator)
    _ = (submit_task, find_active_task, get_task, mark_task_notified)

    center = orchestrator.notification_center
    if center is None:
        return router

    @router.get("/notifications", response_model=list[NotificationEntry])
    async def list_notifications(
        unread_only: bool = False,
        limit: Annotated[int | None, Query(ge=1, le=100)] = None,
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        """Notification center entries of the current user, newest first."""
        owner_id = _require_owner(user)
        return center.list_entries(owner_id, unread_only=unread_only, limit=limit)

    @router.get("/notifications/unread-count", response_model=NotificationCount)
    async def count_unread_notifications(
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        owner_id = _require_owner(user)
        return NotificationCount(count=center.unread_count(owner_id))

    @router.post("/notifications/read-all", response_model=NotificationCount)
    async def mark_all_notifications_read(
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        """Returns the number of entries that were unread."""
        owner_id = _require_owner(user)
        return NotificationCount(count=center.mark_all_read(owner_id))

    @router.post("/notifications/{notification_id}/read", response_model=NotificationEntry)
    async def mark_notification_read(
        notification_id: str,
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        owner_id = _require_owner(user)
        try:
            return center.mark_read(owner_id, notification_id)
        except NotificationNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_notification(
        notification_id: str,
        user: Annotated[UserLike | None, Depends(get_current_user)] = None,
    ):
        owner_id = _require_owner(user)
        if not center.delete(owner_id, notification_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Notification '{notification_id}' not found",
            )

    _ = (
        list_notifications,
        count_unread_notifications,
        mark_all_notifications_read,
        mark_notification_read,
        delete_notification,
    )

    return router
