"""Batch scan grading: identify scanned pages, group them, grade them, save them."""

__version__ = "0.1.0"
