"""CV rewrite plugin."""

from .schema import CVRewriteOutput, CVRewriteParams, RewrittenExperience
from .task import CVRewriteTask

__all__ = ["CVRewriteTask", "CVRewriteParams", "CVRewriteOutput", "RewrittenExperience"]
