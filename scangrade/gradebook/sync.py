"""Write graded batch items to the gradebook exactly once."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from ..batch.models import ItemStatus, ScanItem
from ..batch.queue import BatchQueue
from ..config import DEFAULT_TOPIC
from ..errors import PersistenceFailure
from ..identity.roster import RosterEntry

logger = logging.getLogger("scangrade.gradebook")


@dataclass
class GradeRecord:
    student_id: str
    topic: str
    grade: float
    question_id: Optional[str] = None
    justification: Optional[str] = None
    raw_earned: Optional[float] = None
    raw_possible: Optional[float] = None
    standard: Optional[str] = None
    confidence_label: Optional[str] = None


class GradeStore(ABC):
    """Durable storage the gradebook writes to."""

    @abstractmethod
    def create_grade_record(self, record: GradeRecord):
        """Persist one grade. Raises PersistenceFailure on failure."""
        raise NotImplementedError

    @abstractmethod
    def read_roster(self, class_id: Optional[str] = None) -> list[RosterEntry]:
        raise NotImplementedError


@dataclass
class SyncReport:
    success_count: int = 0
    fail_count: int = 0
    skipped_count: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)  # (item id, error)


def build_grade_record(item: ScanItem) -> GradeRecord:
    """The gradebook row for one completed item."""
    result = item.result
    if result.is_overridden:
        justification = result.override_justification
    else:
        justification = result.grade_justification or result.feedback or None
    return GradeRecord(
        student_id=item.student_id,
        question_id=item.question_id,
        topic=result.problem_identified or DEFAULT_TOPIC,
        grade=result.effective_grade(),
        justification=justification,
        raw_earned=result.total_score.earned,
        raw_possible=result.total_score.possible,
        standard=result.standard,
        confidence_label=result.confidence_label,
    )


def is_gradable(item: ScanItem) -> bool:
    return (
        item.status == ItemStatus.COMPLETED
        and item.result is not None
        and bool(item.student_id)
        and not item.is_continuation
    )


class GradebookSync:
    """Saves completed, identified primary pages through a GradeStore."""

    def __init__(self, store: GradeStore):
        self.store = store

    def save_to_gradebook(self, queue: BatchQueue) -> SyncReport:
        """
        Persist every eligible item not saved yet.

        Continuation pages never get their own row. One failed write does
        not stop the others; failed items stay eligible for the next call.
        """
        report = SyncReport()
        for item in queue.items:
            if not is_gradable(item):
                continue
            if queue.is_saved(item.id):
                report.skipped_count += 1
                continue

            record = build_grade_record(item)
            try:
                self.store.create_grade_record(record)
            except PersistenceFailure as e:
                logger.error("Failed to save grade for item %s (student %s): %s", item.id, item.student_id, e)
                report.fail_count += 1
                report.failures.append((item.id, str(e)))
                continue
            except Exception as e:
                logger.exception("Unexpected error saving grade for item %s", item.id)
                report.fail_count += 1
                report.failures.append((item.id, f"Unexpected error: {e}"))
                continue

            queue.mark_saved(item.id)
            report.success_count += 1

        logger.info("Gradebook sync: %d saved, %d failed, %d already saved",
                    report.success_count, report.fail_count, report.skipped_count)
        return report
