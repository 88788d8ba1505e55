"""TransformModule - abstract base class for task transformations."""

from abc import ABC, abstractmethod
from typing import Callable, ClassVar, Generic, TypeVar

from pydantic import BaseModel

from ..errors import MissingCredentialError
from ..generation import ArtifactGenerator
from .schema_task_record import InputSnapshotRecord, TaskRecord, TaskResultRecord, TaskType

P = TypeVar("P", bound=BaseModel)
Q = TypeVar("Q", bound=BaseModel)

ProgressCallback = Callable[[int], None]
ResultSink = Callable[[TaskRecord, BaseModel], None]


class TransformModule(ABC, Generic[P, Q]):
    """
    Stateless, template-method based transformation.

    - The input snapshot is validated against ``schema`` before running
    - run() produces the full output; persist() hands it to downstream consumers
    - summarize() returns the small result stored on the task record
    """

    schema: type[P]
    requires_target: ClassVar[bool] = True
    requires_input: ClassVar[bool] = True

    def __init__(
        self,
        generator: ArtifactGenerator | None = None,
        result_sink: ResultSink | None = None,
    ):
        self.generator: ArtifactGenerator | None = generator
        self.result_sink: ResultSink | None = result_sink

    @property
    @abstractmethod
    def task_type(self) -> TaskType: ...

    def validate_input(self, snapshot: InputSnapshotRecord | None) -> P:
        """Raises pydantic.ValidationError for a missing or malformed snapshot."""
        if snapshot is None and not self.requires_input:
            snapshot = {}
        return self.schema.model_validate(snapshot)

    @abstractmethod
    async def run(
        self,
        params: P,
        generator: ArtifactGenerator,
        progress_callback: ProgressCallback | None = None,
    ) -> Q:
        """
        Execute the transformation.

        - Must be re-runnable with the same params
        - progress_callback takes a percentage of this module's own work
        """
        ...

    async def execute(
        self,
        params: P,
        progress_callback: ProgressCallback | None = None,
    ) -> Q:
        if self.generator is None:
            raise MissingCredentialError(f"No generator configured for {self.task_type.value}")
        return await self.run(params, self.generator, progress_callback)

    def persist(self, task: TaskRecord, output: Q) -> None:
        """Hand the full output to downstream consumers."""
        if self.result_sink is not None:
            self.result_sink(task, output)

    def summarize(self, output: Q) -> TaskResultRecord:
        _ = output
        return {"success": True}
