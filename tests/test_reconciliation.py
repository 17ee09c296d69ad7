"""Tests for multi-run confidence reconciliation."""

import asyncio

import pytest

from conftest import FakeGrader, rubric_result
from scangrade.errors import OracleFailure
from scangrade.grading.oracle import GradingRequest
from scangrade.grading.reconciliation import (
    ConfidencePolicy,
    ConfidenceReconciler,
    build_grade_result,
    reconcile,
    round_half_up,
)
from scangrade.grading.results import ReconciliationRun, RubricResult, RubricScore, TotalScore


def run(index, *scores):
    """A run over criteria A, B, ... each worth 10 points."""
    rubric = [RubricScore(criterion=chr(65 + i), score=s, max_score=10) for i, s in enumerate(scores)]
    earned = sum(scores)
    possible = 10 * len(scores)
    return ReconciliationRun(index, rubric, TotalScore(earned, possible, earned / possible * 100))


def percentage_run(index, percentage):
    result = rubric_result(percentage)
    return ReconciliationRun(index, result.rubric_scores, result.total_score)


class TestReconcile:

    def test_close_runs_are_high_confidence(self):
        result = reconcile([percentage_run(i, p) for i, p in enumerate([80, 84, 82])])
        assert result.average_percentage == 82
        assert result.spread == 4
        assert result.confidence_label == "high"

    def test_far_apart_runs_are_low_confidence(self):
        result = reconcile([percentage_run(0, 60), percentage_run(1, 90)])
        assert result.average_percentage == 75
        assert result.spread == 30
        assert result.confidence_label == "low"

    def test_medium_band(self):
        result = reconcile([percentage_run(0, 70), percentage_run(1, 80)])
        assert result.confidence_label == "medium"

    def test_single_run_has_no_spread(self):
        result = reconcile([percentage_run(0, 64)])
        assert result.spread == 0
        assert result.confidence_label == "high"
        assert result.runs_used == 1

    def test_per_criterion_means_keep_first_seen_order(self):
        result = reconcile([run(0, 10, 4), run(1, 8, 5)])
        assert list(result.per_criterion_averages) == ["A", "B"]
        assert result.per_criterion_averages == {"A": 9, "B": 4.5}
        # 13.5 / 20 = 67.5% rounds half up
        assert result.average_percentage == 68

    def test_percentage_is_clamped(self):
        over = ReconciliationRun(0, [RubricScore("A", 14, 10)], TotalScore(14, 10, 100))
        result = reconcile([over])
        assert result.per_criterion_averages["A"] == 10
        assert result.average_percentage == 100

    def test_custom_policy(self):
        policy = ConfidencePolicy(high_spread=1, medium_spread=2)
        result = reconcile([percentage_run(0, 80), percentage_run(1, 84)], policy)
        assert result.confidence_label == "low"

    def test_zero_runs(self):
        with pytest.raises(ValueError):
            reconcile([])

    def test_result_is_deterministic(self):
        runs = [run(0, 7, 3), run(1, 9, 6), run(2, 8, 2)]
        assert reconcile(runs) == reconcile(list(runs))

    def test_repeated_criterion_names_stay_separate(self):
        scores = [RubricScore("Show work", 4, 4), RubricScore("Show work", 0, 10)]
        single = RubricResult(rubric_scores=scores, total_score=TotalScore(4, 14, 4 / 14 * 100))

        grade = build_grade_result([single])

        # 4 / 14 = 28.57%
        assert grade.reconciled_percentage == 29
        assert [(s.criterion, s.score, s.max_score) for s in grade.rubric_scores] == [
            ("Show work", 4, 4), ("Show work", 0, 10),
        ]

    def test_repeated_names_pair_up_by_position_across_runs(self):
        first = ReconciliationRun(0, [RubricScore("Step", 4, 4), RubricScore("Step", 2, 10)],
                                  TotalScore(6, 14, 6 / 14 * 100))
        second = ReconciliationRun(1, [RubricScore("Step", 2, 4), RubricScore("Step", 6, 10)],
                                   TotalScore(8, 14, 8 / 14 * 100))
        result = reconcile([first, second])
        assert result.per_criterion_averages == {"Step": 3, "Step #2": 4}
        assert result.average_percentage == 50

    @pytest.mark.parametrize("value,expected", [(0.5, 1), (1.5, 2), (2.5, 3), (74.49, 74)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestConfidenceReconciler:

    def test_grades_n_times_and_reconciles(self):
        grader = FakeGrader({b"page": [80, 84, 82]})
        reconciler = ConfidenceReconciler(grader, runs=3)

        grade = asyncio.run(reconciler.grade_item(b"page", GradingRequest()))

        assert len(grader.calls) == 3
        assert grade.reconciled_percentage == 82
        assert grade.confidence_label == "high"
        assert len(grade.runs) == 3
        assert grade.effective_grade() == 82

    def test_failed_runs_are_excluded(self):
        class Flaky(FakeGrader):
            async def invoke(self, image, request):
                self.calls.append(image)
                if len(self.calls) == 2:
                    raise OracleFailure("rate limited")
                return rubric_result(70)

        grade = asyncio.run(ConfidenceReconciler(Flaky(), runs=3).grade_item(b"page", GradingRequest()))

        assert grade.runs_failed == 1
        assert len(grade.runs) == 2
        assert grade.reconciled_percentage == 70

    def test_unexpected_oracle_errors_count_as_failures(self):
        class Broken(FakeGrader):
            async def invoke(self, image, request):
                raise RuntimeError("socket closed")

        with pytest.raises(OracleFailure):
            asyncio.run(ConfidenceReconciler(Broken(), runs=2).grade_item(b"page", GradingRequest()))

    def test_all_runs_failing_raises(self):
        grader = FakeGrader(failing={b"page"})
        with pytest.raises(OracleFailure):
            asyncio.run(ConfidenceReconciler(grader, runs=3).grade_item(b"page", GradingRequest()))
        assert len(grader.calls) == 3

    def test_needs_at_least_one_run(self):
        with pytest.raises(ValueError):
            ConfidenceReconciler(FakeGrader(), runs=0)
