"""Tests for the SQLAlchemy grade store."""

import pytest

from conftest import add_completed
from scangrade.database import GradeEntry, SqlGradeStore, get_session, init_db
from scangrade.errors import PersistenceFailure
from scangrade.gradebook.sync import GradebookSync, GradeRecord
from scangrade.identity.roster import RosterEntry


@pytest.fixture
def store(tmp_path):
    init_db(f"sqlite:///{tmp_path / 'grades.db'}")
    store = SqlGradeStore()
    store.add_student("s1", "Ada Lovelace", class_id="period-2")
    store.add_student("s2", "Alan Turing", class_id="period-2")
    store.add_student("s3", "Grace Hopper", class_id="period-5")
    return store


class TestSqlGradeStore:

    def test_read_roster(self, store):
        assert store.read_roster("period-2") == [
            RosterEntry(id="s1", display_name="Ada Lovelace"),
            RosterEntry(id="s2", display_name="Alan Turing"),
        ]
        assert len(store.read_roster()) == 3

    def test_create_grade_record(self, store):
        store.create_grade_record(GradeRecord(
            student_id="s1", topic="Fractions", grade=88, question_id="q1",
            justification="Clear work", raw_earned=8.8, raw_possible=10, confidence_label="high",
        ))

        entries = store.grades_for("s1")
        assert len(entries) == 1
        assert entries[0].topic_name == "Fractions"
        assert entries[0].grade == 88
        assert entries[0].question_id == "q1"

    def test_unknown_student_is_a_persistence_failure(self, store):
        with pytest.raises(PersistenceFailure):
            store.create_grade_record(GradeRecord(student_id="nobody", topic="Fractions", grade=50))
        with get_session() as session:
            assert session.query(GradeEntry).count() == 0

    def test_sync_through_database(self, store, queue):
        add_completed(queue, "s1", 90)
        add_completed(queue, "s2", 70)
        add_completed(queue, "ghost", 50)
        sync = GradebookSync(store)

        report = sync.save_to_gradebook(queue)
        again = sync.save_to_gradebook(queue)

        assert (report.success_count, report.fail_count) == (2, 1)
        assert (again.success_count, again.fail_count, again.skipped_count) == (0, 1, 2)
        with get_session() as session:
            assert session.query(GradeEntry).count() == 2
