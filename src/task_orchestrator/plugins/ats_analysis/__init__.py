"""ATS analysis plugin."""

from .schema import ATSAnalysisOutput, ATSAnalysisParams
from .task import ATSAnalysisTask

__all__ = ["ATSAnalysisTask", "ATSAnalysisParams", "ATSAnalysisOutput"]
