"""Gradebook persistence for graded batches."""

from .sync import GradebookSync, GradeRecord, GradeStore, SyncReport, build_grade_record

__all__ = [
    "GradebookSync",
    "GradeRecord",
    "GradeStore",
    "SyncReport",
    "build_grade_record",
]
