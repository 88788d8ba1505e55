"""CV rewrite task implementation."""

from typing import override

from pydantic import ValidationError

from ...common.schema_task_record import TaskResultRecord, TaskType
from ...common.transform_module import ProgressCallback, TransformModule
from ...errors import GenerationError
from ...generation import ArtifactGenerator, parse_json_artifact
from .schema import CVRewriteOutput, CVRewriteParams

SYSTEM_PROMPT = (
    "You are an expert career coach and CV writer. You rewrite CVs so they match a "
    "target job while staying truthful to the candidate's real experience. "
    "Answer with a single JSON object and nothing else."
)

LANGUAGE_NAMES = {"en": "English", "fr": "French"}


def build_prompt(params: CVRewriteParams) -> str:
    company = f" at {params.company}" if params.company else ""
    return (
        f"Rewrite the CV below for the position of {params.job_title}{company}.\n"
        f"Write in {LANGUAGE_NAMES[params.language]}.\n\n"
        "Return JSON with this shape:\n"
        '{"summary": str, "experiences": [{"title": str, "company": str, "bullets": [str]}], '
        '"skills": [str]}\n\n'
        f"JOB DESCRIPTION:\n{params.job_description}\n\n"
        f"CV:\n{params.cv_text}"
    )


class CVRewriteTask(TransformModule[CVRewriteParams, CVRewriteOutput]):
    """Rewrites a CV for a specific job posting."""

    schema: type[CVRewriteParams] = CVRewriteParams

    @property
    @override
    def task_type(self) -> TaskType:
        return TaskType.cv_rewrite

    @override
    async def run(
        self,
        params: CVRewriteParams,
        generator: ArtifactGenerator,
        progress_callback: ProgressCallback | None = None,
    ) -> CVRewriteOutput:
        content = await generator.generate(build_prompt(params), system=SYSTEM_PROMPT)
        if progress_callback:
            progress_callback(80)

        try:
            output = CVRewriteOutput.model_validate(parse_json_artifact(content))
        except ValidationError as e:
            raise GenerationError("Failed to parse CV rewrite response") from e

        if progress_callback:
            progress_callback(100)
        return output

    @override
    def summarize(self, output: CVRewriteOutput) -> TaskResultRecord:
        return {
            "success": True,
            "experience_count": len(output.experiences),
            "skill_count": len(output.skills),
        }
