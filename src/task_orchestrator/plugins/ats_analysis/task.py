"""ATS analysis task implementation."""

from typing import override

from pydantic import ValidationError

from ...common.schema_task_record import TaskResultRecord, TaskType
from ...common.transform_module import ProgressCallback, TransformModule
from ...errors import GenerationError
from ...generation import ArtifactGenerator, parse_json_artifact
from .schema import ATSAnalysisOutput, ATSAnalysisParams

SYSTEM_PROMPT = (
    "You are an applicant tracking system expert. You score how well a CV matches "
    "a job posting. Answer with a single JSON object and nothing else."
)


def build_prompt(params: ATSAnalysisParams) -> str:
    company = f" at {params.company}" if params.company else ""
    return (
        f"Analyse how well this CV matches the position of {params.job_title}{company}.\n\n"
        "Return JSON with this shape:\n"
        '{"match_score": int (0-100), "matched_keywords": [str], '
        '"missing_keywords": [str], "recommendations": [str]}\n\n'
        f"JOB DESCRIPTION:\n{params.job_description}\n\n"
        f"CV:\n{params.cv_text}"
    )


class ATSAnalysisTask(TransformModule[ATSAnalysisParams, ATSAnalysisOutput]):
    """Scores a CV against a job posting."""

    schema: type[ATSAnalysisParams] = ATSAnalysisParams

    @property
    @override
    def task_type(self) -> TaskType:
        return TaskType.ats_analysis

    @override
    async def run(
        self,
        params: ATSAnalysisParams,
        generator: ArtifactGenerator,
        progress_callback: ProgressCallback | None = None,
    ) -> ATSAnalysisOutput:
        content = await generator.generate(build_prompt(params), system=SYSTEM_PROMPT)
        try:
            output = ATSAnalysisOutput.model_validate(parse_json_artifact(content))
        except ValidationError as e:
            raise GenerationError("Failed to parse ATS analysis response") from e

        if progress_callback:
            progress_callback(100)
        return output

    @override
    def summarize(self, output: ATSAnalysisOutput) -> TaskResultRecord:
        return {
            "success": True,
            "match_score": output.match_score,
            "missing_keyword_count": len(output.missing_keywords),
        }
