"""Cover letter plugin."""

from .schema import CoverLetterOutput, CoverLetterParams
from .task import CoverLetterTask

__all__ = ["CoverLetterTask", "CoverLetterParams", "CoverLetterOutput"]
