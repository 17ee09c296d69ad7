"""Reduce repeated, noisy grading runs to one grade plus a confidence label.

The oracle may return different scores for the same page on every call.
Each page is graded N times; per rubric criterion the successful runs are
averaged, and the spread of the run totals decides how much to trust the
result. The reduction itself is deterministic.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from ..config import CONFIDENCE_HIGH_SPREAD, CONFIDENCE_MEDIUM_SPREAD, RECONCILIATION_RUNS
from ..errors import OracleFailure
from .oracle import GradingOracle, GradingRequest
from .results import (
    GradeResult,
    ReconciledResult,
    ReconciliationRun,
    RubricResult,
    RubricScore,
    TotalScore,
)

logger = logging.getLogger("scangrade.reconciliation")

HIGH = "high"
MEDIUM = "medium"
LOW = "low"


@dataclass(frozen=True)
class ConfidencePolicy:
    """Spread bands, in percentage points, for each confidence label."""
    high_spread: float = CONFIDENCE_HIGH_SPREAD
    medium_spread: float = CONFIDENCE_MEDIUM_SPREAD

    def label(self, spread: float) -> str:
        if spread <= self.high_spread:
            return HIGH
        if spread <= self.medium_spread:
            return MEDIUM
        return LOW


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _keyed(scores: Sequence[RubricScore]):
    """Yield (key, score) with repeated criterion names numbered per run: "Work", "Work #2"."""
    seen: dict[str, int] = {}
    for score in scores:
        n = seen[score.criterion] = seen.get(score.criterion, 0) + 1
        yield (score.criterion if n == 1 else f"{score.criterion} #{n}"), score


def reconcile(runs: Sequence[ReconciliationRun], policy: Optional[ConfidencePolicy] = None,
              runs_failed: int = 0) -> ReconciledResult:
    """
    Combine successful grading runs into one result.

    Args:
        runs: Successful runs only; failed runs are excluded by the caller
        policy: Confidence bands to apply
        runs_failed: How many runs were attempted but failed

    Returns:
        ReconciledResult with per-criterion means, the rounded percentage,
        the spread of run totals and its confidence label

    Raises:
        ValueError: If no runs are given
    """
    if not runs:
        raise ValueError("Cannot reconcile zero grading runs")
    policy = policy or ConfidencePolicy()

    # Criteria keep the order in which they first appear
    sums: dict[str, float] = {}
    counts: dict[str, int] = {}
    max_scores: dict[str, float] = {}
    for run in runs:
        for key, score in _keyed(run.rubric_scores):
            sums[key] = sums.get(key, 0.0) + score.score
            counts[key] = counts.get(key, 0) + 1
            max_scores[key] = max(max_scores.get(key, 0.0), score.max_score)

    averages = {
        criterion: _clamp(sums[criterion] / counts[criterion], 0.0, max_scores[criterion])
        for criterion in sums
    }

    earned = sum(averages.values())
    possible = sum(max_scores.values())
    if possible <= 0:
        # No rubric breakdown: fall back to the run totals
        earned = sum(r.total_score.earned for r in runs) / len(runs)
        possible = sum(r.total_score.possible for r in runs) / len(runs)

    if possible > 0:
        percentage = round_half_up(earned / possible * 100)
    else:
        percentage = round_half_up(sum(r.total_score.percentage for r in runs) / len(runs))
    percentage = int(_clamp(percentage, 0, 100))

    run_percentages = [r.total_score.percentage for r in runs]
    spread = max(run_percentages) - min(run_percentages)

    return ReconciledResult(
        average_percentage=percentage,
        per_criterion_averages=averages,
        spread=spread,
        confidence_label=policy.label(spread),
        total_score=TotalScore(earned=earned, possible=possible, percentage=percentage),
        runs_used=len(runs),
        runs_failed=runs_failed,
    )


def _representative(results: list[RubricResult], target: float) -> RubricResult:
    """The run whose total is closest to the reconciled percentage (earliest wins ties)."""
    return min(results, key=lambda r: abs(r.total_score.percentage - target))


def build_grade_result(results: list[RubricResult], policy: Optional[ConfidencePolicy] = None,
                       runs_failed: int = 0) -> GradeResult:
    """Reconcile oracle results into the grade attached to a scan item."""
    runs = [
        ReconciliationRun(run_index=i, rubric_scores=r.rubric_scores, total_score=r.total_score)
        for i, r in enumerate(results)
    ]
    reconciled = reconcile(runs, policy, runs_failed=runs_failed)
    basis = _representative(results, reconciled.average_percentage)

    max_scores = {}
    names = {}
    feedback = {}
    for r in results:
        for key, score in _keyed(r.rubric_scores):
            max_scores[key] = max(max_scores.get(key, 0.0), score.max_score)
            names.setdefault(key, score.criterion)
    for key, score in _keyed(basis.rubric_scores):
        feedback[key] = score.feedback

    return GradeResult(
        rubric_scores=[
            RubricScore(criterion=names[key], score=avg, max_score=max_scores[key], feedback=feedback.get(key, ""))
            for key, avg in reconciled.per_criterion_averages.items()
        ],
        total_score=reconciled.total_score,
        feedback=basis.feedback,
        misconceptions=list(basis.misconceptions),
        problem_identified=basis.problem_identified,
        standard=basis.standard,
        grade_justification=basis.grade_justification,
        reconciled_percentage=reconciled.average_percentage,
        confidence_label=reconciled.confidence_label,
        spread=reconciled.spread,
        runs=runs,
        runs_failed=runs_failed,
    )


class ConfidenceReconciler:
    """Invoke a grading oracle N times for one page and reconcile the results."""

    def __init__(self, oracle: GradingOracle, runs: int = RECONCILIATION_RUNS,
                 policy: Optional[ConfidencePolicy] = None):
        if runs < 1:
            raise ValueError("At least one grading run is required")
        self.oracle = oracle
        self.runs = runs
        self.policy = policy or ConfidencePolicy()

    async def grade_item(self, image, request: GradingRequest) -> GradeResult:
        """
        Grade one page with N serial oracle runs.

        Raises:
            OracleFailure: If every run failed
        """
        results = []
        failed = 0
        last_error = None
        for run_index in range(self.runs):
            try:
                results.append(await self.oracle.invoke(image, request))
            except OracleFailure as e:
                failed += 1
                last_error = e
                logger.warning("Grading run %d/%d failed: %s", run_index + 1, self.runs, e)
            except Exception as e:
                # Oracles are external; anything they raise is an oracle failure
                failed += 1
                last_error = OracleFailure(str(e) or e.__class__.__name__)
                logger.warning("Grading run %d/%d raised %s: %s",
                               run_index + 1, self.runs, e.__class__.__name__, e)

        if not results:
            raise OracleFailure(f"All {self.runs} grading run(s) failed: {last_error}",
                                transient=getattr(last_error, "transient", True))

        grade = build_grade_result(results, self.policy, runs_failed=failed)
        logger.info("Reconciled %d run(s) (%d failed): %s%% confidence=%s spread=%.1f",
                    len(results), failed, grade.reconciled_percentage, grade.confidence_label, grade.spread)
        return grade
