"""Cover letter schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class CoverLetterParams(BaseModel):
    cv_text: str = Field(min_length=1)
    job_title: str = Field(min_length=1)
    company: str = Field(min_length=1)
    job_description: str = Field(min_length=1)
    tone: Literal["professional", "enthusiastic", "concise"] = "professional"
    language: Literal["en", "fr"] = "en"


class CoverLetterOutput(BaseModel):
    subject: str | None = None
    body: str = Field(min_length=1)
