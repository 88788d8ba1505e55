"""ATS analysis schemas."""

from pydantic import BaseModel, Field


class ATSAnalysisParams(BaseModel):
    cv_text: str = Field(min_length=1)
    job_title: str = Field(min_length=1)
    company: str | None = None
    job_description: str = Field(min_length=1)


class ATSAnalysisOutput(BaseModel):
    """Result of matching a CV against a job posting.

    Attributes:
        match_score: Overall match, 0-100
        matched_keywords: Job keywords found in the CV
        missing_keywords: Job keywords absent from the CV
        recommendations: Concrete edits that would raise the score
    """

    match_score: int = Field(ge=0, le=100)
    matched_keywords: list[str] = Field(default_factory=list)
    missing_keywords: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
