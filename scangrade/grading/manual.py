"""Manual scoring engine: a person enters rubric scores for each page."""

import inspect
from typing import Callable

from ..errors import OracleFailure
from .oracle import GradingOracle, GradingRequest
from .results import RubricResult, RubricScore, TotalScore


class ManualGrader(GradingOracle):
    """Record manual grading results through the same contract as the AI engines.

    ``collect_scores(image, request)`` (sync or async) returns a list of
    ``{"criterion", "score", "feedback"}`` dicts, one per rubric step in
    order, or None when the grader skipped the page.
    """

    mode = "manual"

    def __init__(self, collect_scores: Callable):
        self.collect_scores = collect_scores

    async def invoke(self, image, request: GradingRequest) -> RubricResult:
        entries = self.collect_scores(image, request)
        if inspect.isawaitable(entries):
            entries = await entries
        if entries is None:
            raise OracleFailure("Page skipped during manual grading", transient=True)

        steps = request.rubric_steps
        scores = []
        for i, entry in enumerate(entries):
            step = steps[i] if i < len(steps) else None
            max_score = float(entry.get("max_score", step.points if step else 0))
            score = float(entry.get("score", 0))
            if max_score > 0:
                score = min(max(score, 0.0), max_score)
            scores.append(RubricScore(
                criterion=entry.get("criterion") or (step.description if step else f"Step {i + 1}"),
                score=score,
                max_score=max_score,
                feedback=entry.get("feedback", ""),
            ))

        earned = sum(s.score for s in scores)
        possible = sum(s.max_score for s in scores)
        percentage = (earned / possible * 100) if possible > 0 else 0
        return RubricResult(
            rubric_scores=scores,
            total_score=TotalScore(earned=earned, possible=possible, percentage=percentage),
            feedback=_join_feedback(scores),
        )


def _join_feedback(scores: list[RubricScore]) -> str:
    return "\n".join(s.feedback for s in scores if s.feedback)
