"""Grading engines and confidence reconciliation."""

from .oracle import GradingOracle, GradingRequest, HandwritingMatch, HandwritingOracle, RubricStep
from .results import GradeResult, RubricResult, RubricScore, TotalScore
from .reconciliation import ConfidencePolicy, ConfidenceReconciler, reconcile
from .claude_client import ClaudeClient
from .claude_grader import ClaudeVisionGrader, make_grader
from .handwriting import ClaudeHandwritingComparer
from .manual import ManualGrader

__all__ = [
    "GradingOracle",
    "GradingRequest",
    "HandwritingMatch",
    "HandwritingOracle",
    "RubricStep",
    "GradeResult",
    "RubricResult",
    "RubricScore",
    "TotalScore",
    "ConfidencePolicy",
    "ConfidenceReconciler",
    "reconcile",
    "ClaudeClient",
    "ClaudeVisionGrader",
    "make_grader",
    "ClaudeHandwritingComparer",
    "ManualGrader",
]
