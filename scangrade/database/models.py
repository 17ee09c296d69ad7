"""SQLAlchemy models for the roster and the gradebook."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class Student(Base):
    __tablename__ = "students"

    id = Column(String(64), primary_key=True)  # the id printed in QR codes
    display_name = Column(String(200), nullable=False)
    class_id = Column(String(64), index=True)
    created_at = Column(DateTime, default=_utcnow)

    grades = relationship("GradeEntry", back_populates="student")

    def __repr__(self):
        return f"<Student {self.id} {self.display_name!r}>"


class GradeEntry(Base):
    """One grade written by a gradebook sync."""
    __tablename__ = "grade_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), ForeignKey("students.id"), nullable=False, index=True)
    question_id = Column(String(64))
    topic_name = Column(String(200), nullable=False)
    grade = Column(Float, nullable=False)
    grade_justification = Column(Text)
    raw_earned = Column(Float)
    raw_possible = Column(Float)
    standard = Column(String(100))
    confidence_label = Column(String(10))
    created_at = Column(DateTime, default=_utcnow)

    student = relationship("Student", back_populates="grades")
