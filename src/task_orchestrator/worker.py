"""Worker runtime - executes and resumes background tasks."""

import asyncio
import threading
from importlib.metadata import entry_points
from typing import NamedTuple, cast

from loguru import logger
from pydantic import BaseModel, ValidationError

from .common.schema_task_record import TaskRecord, TaskType
from .common.transform_module import ResultSink, TransformModule
from .errors import (
    GenerationError,
    InvalidTransitionError,
    MissingCredentialError,
    ResumptionDataMissingError,
)
from .generation import ArtifactGenerator
from .lifecycle import TaskLifecycleManager

TaskRegistry = dict[TaskType, TransformModule[BaseModel, BaseModel]]

TASK_DATA_MISSING = "task data missing"
MISSING_CREDENTIAL_MESSAGE = "AI service credentials are not configured"


class Checkpoint(NamedTuple):
    progress: int
    step: int
    label: str


VALIDATING = Checkpoint(10, 0, "Validating input")
PREPARING = Checkpoint(30, 1, "Preparing")
GENERATING = Checkpoint(50, 2, "Generating")
SAVING = Checkpoint(75, 3, "Saving result")


def get_task_registry(
    generator: ArtifactGenerator | None = None,
    result_sink: ResultSink | None = None,
) -> TaskRegistry:
    """Load all transform modules from entry points.

    Discovers modules from [project.entry-points."task_orchestrator.tasks"]
    in pyproject.toml.

    Returns:
        Dict mapping task type -> TransformModule instance

    Raises:
        RuntimeError: If a module fails to load
    """
    registry: TaskRegistry = {}
    eps = entry_points(group="task_orchestrator.tasks")

    for ep in eps:
        try:
            module_class = cast(type[TransformModule[BaseModel, BaseModel]], ep.load())
            module = module_class(generator=generator, result_sink=result_sink)
            registry[module.task_type] = module
        except Exception as e:
            raise RuntimeError(f"Failed to load task '{ep.name}': {e}") from e

    return registry


def classify_error(task_type: TaskType, error: Exception) -> str:
    """Short user-facing message for a failed transformation."""
    if isinstance(error, MissingCredentialError):
        return MISSING_CREDENTIAL_MESSAGE
    if isinstance(error, GenerationError) and str(error):
        return str(error)
    return f"{task_type.label} failed"


class Worker:
    """Worker runtime that executes tasks and resumes unfinished ones.

    Responsibilities:
    - Runs each task on its own asyncio task
    - Guards against running the same task twice in this process
    - Checkpoints progress at phase boundaries (best effort)
    - Writes exactly one terminal state per run
    - Resumes pending/in-progress tasks after a restart

    The execution guard is process-local; two processes may still run the
    same task concurrently.

    Example:
        worker = Worker(lifecycle, registry)
        worker.start(owner_id, task_id)
        ...
        await worker.resume(owner_id)  # on start-up
    """

    def __init__(self, lifecycle: TaskLifecycleManager, task_registry: TaskRegistry | None = None):
        self.lifecycle: TaskLifecycleManager = lifecycle
        self.task_registry: TaskRegistry = (
            task_registry if task_registry is not None else get_task_registry()
        )
        self._running: set[str] = set()
        self._running_lock: threading.Lock = threading.Lock()
        self._started: set[asyncio.Task[bool]] = set()

    def get_supported_task_types(self) -> list[TaskType]:
        return list(self.task_registry.keys())

    def is_running(self, task_id: str) -> bool:
        with self._running_lock:
            return task_id in self._running

    def start(self, owner_id: str, task_id: str) -> asyncio.Task[bool]:
        """Schedule execute() on the running loop and return the asyncio task."""
        task = asyncio.get_running_loop().create_task(
            self.execute(owner_id, task_id), name=f"task-{task_id}"
        )
        self._started.add(task)
        task.add_done_callback(self._started.discard)
        return task

    async def drain(self) -> None:
        """Wait for every task started by this worker."""
        while self._started:
            _ = await asyncio.gather(*list(self._started), return_exceptions=True)

    async def execute(self, owner_id: str, task_id: str) -> bool:
        """Run one task to a terminal state.

        Returns:
            False if this process is already running the task, True otherwise
        """
        if not self._claim(task_id):
            logger.debug(f"Task {task_id} already running in this process; skipping")
            return False

        try:
            await self._run_claimed(owner_id, task_id)
        except InvalidTransitionError as e:
            # Another writer finalised the task first.
            logger.info(f"Ignoring stale write for task {task_id}: {e}")
        except Exception:
            logger.exception(f"Task {task_id}: terminal write failed")
        finally:
            self._release(task_id)
        return True

    async def resume(self, owner_id: str) -> list[asyncio.Task[bool]]:
        """Restart every unfinished task of owner_id that this worker can run.

        Tasks without a usable input snapshot are failed immediately and
        never executed. Must be called from the event loop.
        """
        supported = self.get_supported_task_types()
        if not supported:
            return []

        adapter = self.lifecycle.adapter
        candidates = adapter.query(adapter.active_filter(owner_id, types=supported))
        started: list[asyncio.Task[bool]] = []

        for task in candidates:
            handle = self.resume_task(task)
            if handle is not None:
                started.append(handle)

        return started

    def resume_task(self, task: TaskRecord) -> asyncio.Task[bool] | None:
        """Restart one unfinished task found in the store.

        Returns None when the task is finished, already running here, of an
        unsupported type or has no usable snapshot (it is then failed).
        """
        if task.is_terminal or self.is_running(task.id):
            return None
        module = self.task_registry.get(task.type)
        if module is None:
            return None
        try:
            _ = module.validate_input(task.input_snapshot)
        except ValidationError as e:
            logger.warning(str(ResumptionDataMissingError(task.id, f"{e.error_count()} validation errors")))
            self._fail_quietly(task, TASK_DATA_MISSING)
            return None

        logger.info(f"Resuming task {task.id} ({task.type.value}) from {task.status.value}")
        return self.start(task.owner_id, task.id)

    async def _run_claimed(self, owner_id: str, task_id: str) -> None:
        task = self.lifecycle.get(owner_id, task_id)
        if task.is_terminal:
            logger.debug(f"Task {task_id} is already {task.status.value}")
            return

        module = self.task_registry.get(task.type)
        if module is None:
            _ = self.lifecycle.fail(owner_id, task_id, f"No worker available for {task.type.value}")
            return

        self._checkpoint(task, VALIDATING)
        try:
            params = module.validate_input(task.input_snapshot)
        except ValidationError as e:
            logger.warning(str(ResumptionDataMissingError(task_id, f"{e.error_count()} validation errors")))
            _ = self.lifecycle.fail(owner_id, task_id, TASK_DATA_MISSING)
            return

        def on_progress(pct: int) -> None:
            span = SAVING.progress - GENERATING.progress
            clamped = min(100, max(0, pct))
            self._checkpoint(
                task,
                Checkpoint(GENERATING.progress + clamped * span // 100, GENERATING.step, GENERATING.label),
            )

        try:
            self._checkpoint(task, PREPARING)
            self._checkpoint(task, GENERATING)
            output = await module.execute(params, on_progress)
            self._checkpoint(task, SAVING)
            module.persist(task, output)
            summary = module.summarize(output)
        except Exception as e:
            logger.warning(f"Task {task_id} transformation failed: {e!r}")
            _ = self.lifecycle.fail(owner_id, task_id, classify_error(task.type, e))
            return

        _ = self.lifecycle.complete(owner_id, task_id, summary)

    def _checkpoint(self, task: TaskRecord, checkpoint: Checkpoint) -> None:
        """Progress is a display hint; failures here never stop the task."""
        try:
            _ = self.lifecycle.update_progress(
                task.owner_id, task.id, checkpoint.progress, checkpoint.step, checkpoint.label
            )
        except Exception as e:
            logger.warning(f"Task {task.id}: checkpoint {checkpoint.progress}% not saved: {e}")

    def _fail_quietly(self, task: TaskRecord, message: str) -> None:
        try:
            _ = self.lifecycle.fail(task.owner_id, task.id, message)
        except InvalidTransitionError as e:
            logger.debug(str(e))
        except Exception:
            logger.exception(f"Task {task.id}: could not record '{message}'")

    def _claim(self, task_id: str) -> bool:
        with self._running_lock:
            if task_id in self._running:
                return False
            self._running.add(task_id)
            return True

    def _release(self, task_id: str) -> None:
        with self._running_lock:
            self._running.discard(task_id)
