"""Database models and connection management."""

from .db import init_db, get_engine, get_session
from .models import Base, Student, GradeEntry
from .store import SqlGradeStore

__all__ = [
    "init_db",
    "get_engine",
    "get_session",
    "Base",
    "Student",
    "GradeEntry",
    "SqlGradeStore",
]
