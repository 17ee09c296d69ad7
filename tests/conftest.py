"""Shared fakes for the batch pipeline tests."""

import pytest

from scangrade.batch.models import ItemStatus
from scangrade.batch.queue import BatchQueue
from scangrade.errors import OracleFailure, PersistenceFailure
from scangrade.gradebook.sync import GradeStore
from scangrade.grading.oracle import GradingOracle, HandwritingMatch, HandwritingOracle
from scangrade.grading.reconciliation import build_grade_result
from scangrade.grading.results import RubricResult, RubricScore, TotalScore
from scangrade.identity import decode
from scangrade.identity.roster import RosterEntry


def rubric_result(percentage, problem="Solving linear equations", misconceptions=()):
    """A single-criterion result out of 100 points."""
    return RubricResult(
        rubric_scores=[RubricScore(criterion="Work shown", score=percentage, max_score=100)],
        total_score=TotalScore(earned=percentage, possible=100, percentage=percentage),
        feedback="Good effort",
        misconceptions=list(misconceptions),
        problem_identified=problem,
        grade_justification=f"Earned {percentage} of 100",
    )


class FakeGrader(GradingOracle):
    """Returns scripted percentages per image; images listed in ``failing`` raise."""

    def __init__(self, percentages=None, default=80, failing=()):
        self.percentages = dict(percentages or {})
        self.default = default
        self.failing = set(failing)
        self.calls = []

    async def invoke(self, image, request):
        self.calls.append(image)
        key = image[0] if isinstance(image, list) else image
        if key in self.failing:
            raise OracleFailure(f"grading service unavailable for {key!r}")
        value = self.percentages.get(key, self.default)
        if isinstance(value, list):
            value = value.pop(0)
        return rubric_result(value)


class FakeHandwriting(HandwritingOracle):
    """Similarity looked up by (image_a, image_b); unknown pairs score 0."""

    def __init__(self, similarities=None, names=None):
        self.similarities = dict(similarities or {})
        self.names = dict(names or {})
        self.compared = []

    async def compare(self, image_a, image_b):
        self.compared.append((image_a, image_b))
        return HandwritingMatch(similarity=self.similarities.get((image_a, image_b), 0.0))

    async def read_name(self, image):
        return self.names.get(image)


class FakeQRReader:
    """Maps image bytes to the raw QR text printed on them."""

    def __init__(self, codes=None):
        self.codes = dict(codes or {})

    def read(self, image):
        raw = self.codes.get(image)
        return raw, decode(raw) if raw is not None else None


class MemoryGradeStore(GradeStore):
    def __init__(self, roster=(), failing_students=()):
        self.records = []
        self.roster = list(roster)
        self.failing_students = set(failing_students)

    def create_grade_record(self, record):
        if record.student_id in self.failing_students:
            raise PersistenceFailure(f"write rejected for {record.student_id}")
        self.records.append(record)

    def read_roster(self, class_id=None):
        return list(self.roster)


def add_completed(queue, student_id, percentage, question_id=None, image=None):
    """Add an item that has already been graded."""
    item_id = queue.add_image(image or f"{student_id}-page".encode(), student_id=student_id,
                              question_id=question_id)
    queue.transition(item_id, ItemStatus.READY)
    queue.transition(item_id, ItemStatus.ANALYZING)
    queue.transition(item_id, ItemStatus.COMPLETED, result=build_grade_result([rubric_result(percentage)]))
    return item_id


@pytest.fixture
def queue():
    return BatchQueue()


@pytest.fixture
def roster():
    return [
        RosterEntry(id="s1", display_name="Ada Lovelace"),
        RosterEntry(id="s2", display_name="Alan Turing"),
        RosterEntry(id="s3", display_name="Grace Hopper"),
    ]
