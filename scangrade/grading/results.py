"""Result types shared by the grading oracles and the batch queue."""

from dataclasses import dataclass, field, asdict
from typing import Optional


@dataclass
class RubricScore:
    criterion: str
    score: float
    max_score: float
    feedback: str = ""


@dataclass
class TotalScore:
    earned: float
    possible: float
    percentage: float


@dataclass
class RubricResult:
    """What one oracle invocation returns for one page."""
    rubric_scores: list[RubricScore]
    total_score: TotalScore
    feedback: str = ""
    misconceptions: list[str] = field(default_factory=list)
    problem_identified: Optional[str] = None
    standard: Optional[str] = None
    grade_justification: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RubricResult":
        """
        Build a result from the JSON an oracle produced.

        Percentages are recomputed from earned/possible when missing and
        always clamped to [0, 100]. Raises ValueError on malformed input.
        """
        if not isinstance(data, dict):
            raise ValueError("Grading result must be a JSON object")

        scores = []
        for entry in data.get("rubric_scores") or data.get("rubricScores") or []:
            if not isinstance(entry, dict):
                raise ValueError(f"Rubric score must be an object, got {entry!r}")
            max_score = float(entry.get("max_score", entry.get("maxScore", 0)) or 0)
            score = float(entry.get("score", 0) or 0)
            scores.append(RubricScore(
                criterion=str(entry.get("criterion", "")),
                score=min(max(score, 0.0), max_score) if max_score > 0 else max(score, 0.0),
                max_score=max_score,
                feedback=str(entry.get("feedback", "") or ""),
            ))

        total = data.get("total_score") or data.get("totalScore") or {}
        if not isinstance(total, dict):
            raise ValueError(f"total_score must be an object, got {total!r}")
        earned = float(total.get("earned", sum(s.score for s in scores)) or 0)
        possible = float(total.get("possible", sum(s.max_score for s in scores)) or 0)
        percentage = total.get("percentage")
        if percentage is None:
            percentage = (earned / possible * 100) if possible > 0 else 0
        percentage = min(max(float(percentage), 0.0), 100.0)

        misconceptions = data.get("misconceptions") or []
        return cls(
            rubric_scores=scores,
            total_score=TotalScore(earned=earned, possible=possible, percentage=percentage),
            feedback=str(data.get("feedback", "") or ""),
            misconceptions=[str(m) for m in misconceptions],
            problem_identified=data.get("problem_identified") or data.get("problemIdentified"),
            standard=data.get("standard"),
            grade_justification=data.get("grade_justification") or data.get("gradeJustification"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReconciliationRun:
    run_index: int
    rubric_scores: list[RubricScore]
    total_score: TotalScore


@dataclass
class ReconciledResult:
    average_percentage: float
    per_criterion_averages: dict[str, float]
    spread: float
    confidence_label: str
    total_score: TotalScore
    runs_used: int
    runs_failed: int = 0


@dataclass
class GradeResult:
    """The grade attached to a scan item once analysis completes."""
    rubric_scores: list[RubricScore]
    total_score: TotalScore
    feedback: str = ""
    misconceptions: list[str] = field(default_factory=list)
    problem_identified: Optional[str] = None
    standard: Optional[str] = None
    grade_justification: Optional[str] = None
    reconciled_percentage: Optional[float] = None
    confidence_label: Optional[str] = None
    spread: Optional[float] = None
    runs: list[ReconciliationRun] = field(default_factory=list)
    runs_failed: int = 0
    selected_run_index: Optional[int] = None
    overridden_grade: Optional[float] = None
    override_justification: Optional[str] = None

    @property
    def is_overridden(self) -> bool:
        return self.overridden_grade is not None

    def effective_grade(self) -> float:
        """Override, then a teacher-selected run, then the reconciled score, then the raw percentage."""
        if self.overridden_grade is not None:
            return self.overridden_grade
        if self.selected_run_index is not None:
            for run in self.runs:
                if run.run_index == self.selected_run_index:
                    return run.total_score.percentage
        if self.reconciled_percentage is not None:
            return self.reconciled_percentage
        return self.total_score.percentage

    def to_dict(self) -> dict:
        data = asdict(self)
        data["is_overridden"] = self.is_overridden
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "GradeResult":
        def scores(entries):
            return [RubricScore(**e) for e in entries or []]

        return cls(
            rubric_scores=scores(data.get("rubric_scores")),
            total_score=TotalScore(**data["total_score"]),
            feedback=data.get("feedback", ""),
            misconceptions=list(data.get("misconceptions") or []),
            problem_identified=data.get("problem_identified"),
            standard=data.get("standard"),
            grade_justification=data.get("grade_justification"),
            reconciled_percentage=data.get("reconciled_percentage"),
            confidence_label=data.get("confidence_label"),
            spread=data.get("spread"),
            runs=[
                ReconciliationRun(
                    run_index=r["run_index"],
                    rubric_scores=scores(r.get("rubric_scores")),
                    total_score=TotalScore(**r["total_score"]),
                )
                for r in data.get("runs") or []
            ],
            runs_failed=data.get("runs_failed", 0),
            selected_run_index=data.get("selected_run_index"),
            overridden_grade=data.get("overridden_grade"),
            override_justification=data.get("override_justification"),
        )
