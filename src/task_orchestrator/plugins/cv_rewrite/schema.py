"""CV rewrite schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class CVRewriteParams(BaseModel):
    """Input snapshot of a CV rewrite.

    Attributes:
        cv_text: Plain text of the CV to rewrite
        job_title: Title of the targeted job
        company: Company offering the job
        job_description: Full job posting text
        language: Output language
    """

    cv_text: str = Field(min_length=1)
    job_title: str = Field(min_length=1)
    company: str | None = None
    job_description: str = Field(min_length=1)
    language: Literal["en", "fr"] = "en"


class RewrittenExperience(BaseModel):
    title: str
    company: str | None = None
    bullets: list[str] = Field(default_factory=list)


class CVRewriteOutput(BaseModel):
    summary: str
    experiences: list[RewrittenExperience] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
