"""Batch queue, page grouping and session recovery."""

from .models import BatchSummary, IdentificationSource, ItemStatus, PageType, ScanItem
from .queue import BatchQueue
from .grouping import GroupingResult, PageGrouper
from .persistence import SessionStore


# BatchPipeline imported lazily; it pulls in the identity package
def get_pipeline():
    from .pipeline import BatchPipeline
    return BatchPipeline


__all__ = [
    "BatchSummary",
    "IdentificationSource",
    "ItemStatus",
    "PageType",
    "ScanItem",
    "BatchQueue",
    "GroupingResult",
    "PageGrouper",
    "SessionStore",
    "get_pipeline",
]
