"""SQLAlchemy-backed GradeStore."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import PersistenceFailure
from ..gradebook.sync import GradeRecord, GradeStore
from ..identity.roster import RosterEntry
from .db import get_session
from .models import GradeEntry, Student

logger = logging.getLogger("scangrade.database")


class SqlGradeStore(GradeStore):
    """Stores grades and reads the roster through ``get_session``."""

    def create_grade_record(self, record: GradeRecord):
        try:
            with get_session() as session:
                if session.get(Student, record.student_id) is None:
                    raise PersistenceFailure(f"Unknown student {record.student_id}")
                session.add(GradeEntry(
                    student_id=record.student_id,
                    question_id=record.question_id,
                    topic_name=record.topic,
                    grade=record.grade,
                    grade_justification=record.justification,
                    raw_earned=record.raw_earned,
                    raw_possible=record.raw_possible,
                    standard=record.standard,
                    confidence_label=record.confidence_label,
                ))
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Database error: {e}") from e

    def read_roster(self, class_id: Optional[str] = None) -> list[RosterEntry]:
        try:
            with get_session() as session:
                query = session.query(Student)
                if class_id:
                    query = query.filter(Student.class_id == class_id)
                return [RosterEntry(id=s.id, display_name=s.display_name)
                        for s in query.order_by(Student.display_name)]
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not read roster: {e}") from e

    def add_student(self, student_id: str, display_name: str, class_id: Optional[str] = None):
        """Add a student to the roster, or rename an existing one."""
        with get_session() as session:
            student = session.get(Student, student_id)
            if student is None:
                session.add(Student(id=student_id, display_name=display_name, class_id=class_id))
            else:
                student.display_name = display_name
                if class_id:
                    student.class_id = class_id
            session.commit()

    def grades_for(self, student_id: str) -> list[GradeEntry]:
        with get_session() as session:
            entries = (
                session.query(GradeEntry)
                .filter(GradeEntry.student_id == student_id)
                .order_by(GradeEntry.id)
                .all()
            )
            session.expunge_all()
            return entries
