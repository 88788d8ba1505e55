"""Cover letter task implementation."""

from typing import override

from pydantic import ValidationError

from ...common.schema_task_record import TaskResultRecord, TaskType
from ...common.transform_module import ProgressCallback, TransformModule
from ...errors import GenerationError
from ...generation import ArtifactGenerator, parse_json_artifact
from .schema import CoverLetterOutput, CoverLetterParams

SYSTEM_PROMPT = (
    "You write cover letters grounded in the candidate's actual CV. Never invent "
    "experience. Answer with a single JSON object and nothing else."
)

LANGUAGE_NAMES = {"en": "English", "fr": "French"}


def build_prompt(params: CoverLetterParams) -> str:
    return (
        f"Write a {params.tone} cover letter in {LANGUAGE_NAMES[params.language]} for the "
        f"position of {params.job_title} at {params.company}.\n\n"
        'Return JSON with this shape: {"subject": str, "body": str}\n\n'
        f"JOB DESCRIPTION:\n{params.job_description}\n\n"
        f"CV:\n{params.cv_text}"
    )


class CoverLetterTask(TransformModule[CoverLetterParams, CoverLetterOutput]):
    schema: type[CoverLetterParams] = CoverLetterParams

    @property
    @override
    def task_type(self) -> TaskType:
        return TaskType.cover_letter

    @override
    async def run(
        self,
        params: CoverLetterParams,
        generator: ArtifactGenerator,
        progress_callback: ProgressCallback | None = None,
    ) -> CoverLetterOutput:
        content = await generator.generate(build_prompt(params), system=SYSTEM_PROMPT)
        try:
            output = CoverLetterOutput.model_validate(parse_json_artifact(content))
        except ValidationError as e:
            raise GenerationError("Failed to parse cover letter response") from e

        if progress_callback:
            progress_callback(100)
        return output

    @override
    def summarize(self, output: CoverLetterOutput) -> TaskResultRecord:
        return {"success": True, "word_count": len(output.body.split())}
