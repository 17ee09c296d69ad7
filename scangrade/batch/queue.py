"""Ordered collection of scan items with their lifecycle state.

The queue is owned by one session. Items are never mutated in place:
every change swaps in an updated copy, so tuples returned by ``items``
stay valid snapshots. Subscribers are told about every change.
"""

import logging
import uuid
from collections import Counter
from dataclasses import replace
from typing import Callable, Iterable, Optional

from ..config import PASS_THRESHOLD
from ..errors import InvalidTransition
from .models import (
    BatchSummary,
    Identification,
    IdentificationSource,
    ItemStatus,
    PageType,
    ScanItem,
    can_transition,
)

logger = logging.getLogger("scangrade.batch")

SCORE_RANGES = [
    ("0-59%", 0, 59),
    ("60-69%", 60, 69),
    ("70-79%", 70, 79),
    ("80-89%", 80, 89),
    ("90-100%", 90, 100),
]

Listener = Callable[[str, Optional[str]], None]


class BatchQueue:
    """A batch of scanned pages moving through identification, grading and sync."""

    def __init__(self):
        self._items: list[ScanItem] = []
        self._saved: set[str] = set()
        self._listeners: list[Listener] = []
        self.current_index = -1
        self.is_processing = False
        self.is_identifying = False

    # --- Observation ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(event, item_id)``; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, item_id: Optional[str] = None):
        for listener in list(self._listeners):
            listener(event, item_id)

    @property
    def items(self) -> tuple[ScanItem, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(tuple(self._items))

    def _index_of(self, item_id: str) -> int:
        for i, item in enumerate(self._items):
            if item.id == item_id:
                return i
        raise KeyError(f"No item {item_id} in batch")

    def get(self, item_id: str) -> ScanItem:
        return self._items[self._index_of(item_id)]

    def __contains__(self, item_id: str) -> bool:
        return any(item.id == item_id for item in self._items)

    # --- Ingestion and editing ---

    def add_image(self, image, student_id: Optional[str] = None, question_id: Optional[str] = None,
                  filename: Optional[str] = None) -> str:
        """Append a pending item and return its id."""
        item_id = uuid.uuid4().hex
        identification = None
        if student_id:
            identification = Identification(source=IdentificationSource.MANUAL, confidence="high")
        self._items.append(ScanItem(
            id=item_id,
            image=image,
            filename=filename,
            student_id=student_id,
            question_id=question_id,
            identification=identification,
        ))
        logger.debug("Added item %s (%s)", item_id, filename or "unnamed")
        self._emit("added", item_id)
        return item_id

    def remove_image(self, item_id: str):
        """Remove an item; its continuation pages become ungrouped.

        A primary that loses its last continuation this way is ungrouped too.
        """
        index = self._index_of(item_id)
        primary_id = self._items[index].linked_item_id
        del self._items[index]
        self._saved.discard(item_id)
        for i, item in enumerate(self._items):
            if item.linked_item_id == item_id:
                self._items[i] = item.copy(page_type=None, linked_item_id=None)
        if primary_id in self and not self.continuations_of(primary_id):
            primary = self.get(primary_id)
            if primary.page_type == PageType.PRIMARY:
                self._items[self._index_of(primary_id)] = primary.copy(page_type=None)
        if self.current_index >= len(self._items):
            self.current_index = -1
        self._emit("removed", item_id)

    def update_item_student(self, item_id: str, student_id: str, student_name: Optional[str] = None):
        """Manually assign a student. Clears the auto-assigned flag."""
        item = self.get(item_id)
        previous = item.identification
        identification = Identification(
            source=IdentificationSource.MANUAL,
            confidence="high",
            qr_code_detected=previous.qr_code_detected if previous else False,
            qr_content=previous.qr_content if previous else None,
            page_number=previous.page_number if previous else None,
            total_pages=previous.total_pages if previous else None,
            handwritten_name=previous.handwritten_name if previous else None,
        )
        status = item.status
        if status in (ItemStatus.PENDING, ItemStatus.UNASSIGNED):
            status = ItemStatus.READY
        page_type = None if item.page_type == PageType.UNASSIGNED else item.page_type
        self._replace(item.copy(
            student_id=student_id,
            student_name=student_name,
            auto_assigned=False,
            identification=identification,
            status=status,
            page_type=page_type,
            grouping_conflict=None,
        ))
        self._emit("updated", item_id)

    def update_item_question(self, item_id: str, question_id: Optional[str]):
        item = self.get(item_id)
        self._replace(item.copy(question_id=question_id))
        self._emit("updated", item_id)

    def reorder_items(self, from_index: int, to_index: int):
        """Move the item at ``from_index`` to ``to_index``."""
        size = len(self._items)
        if not (0 <= from_index < size and 0 <= to_index < size):
            raise IndexError(f"Cannot move item {from_index} to {to_index} in a batch of {size}")
        item = self._items.pop(from_index)
        self._items.insert(to_index, item)
        self._emit("reordered", item.id)

    def clear_all(self):
        self._items = []
        self._saved.clear()
        self.current_index = -1
        self._emit("cleared")

    def _replace(self, item: ScanItem):
        self._items[self._index_of(item.id)] = item

    def apply_changes(self, item_id: str, **changes) -> ScanItem:
        """Swap in a copy of an item with field changes. Status changes go through ``transition``."""
        if "status" in changes:
            raise ValueError("Use transition() to change an item's status")
        item = self.get(item_id).copy(**changes)
        self._replace(item)
        self._emit("updated", item_id)
        return item

    def transition(self, item_id: str, status: ItemStatus, **changes) -> ScanItem:
        """
        Move an item along the state machine, optionally changing other fields.

        Raises:
            InvalidTransition: If the edge is not allowed
        """
        item = self.get(item_id)
        if not can_transition(item.status, status):
            raise InvalidTransition(f"Item {item_id}: {item.status.value} -> {status.value} is not allowed")
        item = item.copy(status=status, **changes)
        self._replace(item)
        self._emit("status", item_id)
        return item

    # --- Grades ---

    def set_override(self, item_id: str, grade: float, justification: str):
        """Record a teacher's grade. Reconciliation never overwrites it."""
        item = self.get(item_id)
        if item.result is None:
            raise ValueError(f"Item {item_id} has no grade to override")
        if not justification or not justification.strip():
            raise ValueError("An override requires a justification")
        if not 0 <= grade <= 100:
            raise ValueError(f"Override grade must be within 0-100, got {grade}")
        result = item.result
        self._replace(item.copy(result=replace(
            result, overridden_grade=float(grade), override_justification=justification.strip()
        )))
        self._emit("updated", item_id)

    def clear_override(self, item_id: str):
        item = self.get(item_id)
        if item.result is None or not item.result.is_overridden:
            return
        result = item.result
        self._replace(item.copy(result=replace(result, overridden_grade=None, override_justification=None)))
        self._emit("updated", item_id)

    def select_run(self, item_id: str, run_index: Optional[int]):
        """Pin one grading run as the grade, or go back to the average with None."""
        item = self.get(item_id)
        if item.result is None:
            raise ValueError(f"Item {item_id} has no grading runs")
        if run_index is not None and run_index not in {r.run_index for r in item.result.runs}:
            raise ValueError(f"Item {item_id} has no run {run_index}")
        result = item.result
        self._replace(item.copy(result=replace(result, selected_run_index=run_index)))
        self._emit("updated", item_id)

    # --- Saved set ---

    @property
    def saved_ids(self) -> frozenset:
        return frozenset(self._saved)

    def is_saved(self, item_id: str) -> bool:
        return item_id in self._saved

    def mark_saved(self, item_id: str):
        self._saved.add(item_id)
        self._replace(self.get(item_id).copy(saved=True))
        self._emit("saved", item_id)

    def unmark_saved(self, item_id: str):
        """Allow an already-saved item to be written to the gradebook again."""
        self._saved.discard(item_id)
        self._replace(self.get(item_id).copy(saved=False))
        self._emit("updated", item_id)

    # --- Derived views ---

    def by_status(self, *statuses: ItemStatus) -> list[ScanItem]:
        return [item for item in self._items if item.status in statuses]

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ItemStatus}
        for item in self._items:
            counts[item.status.value] += 1
        return counts

    def continuations_of(self, item_id: str) -> list[ScanItem]:
        return [item for item in self._items if item.linked_item_id == item_id]

    def generate_summary(self) -> BatchSummary:
        """Class-level statistics over completed, gradable items."""
        completed = [
            item for item in self._items
            if item.status == ItemStatus.COMPLETED and item.result and not item.is_continuation
        ]
        if not completed:
            return BatchSummary()

        scores = [item.result.effective_grade() for item in completed]
        misconceptions = Counter(m for item in completed for m in item.result.misconceptions)

        return BatchSummary(
            total_students=len(completed),
            average_score=round(sum(scores) / len(scores)),
            highest_score=max(scores),
            lowest_score=min(scores),
            pass_rate=round(len([s for s in scores if s >= PASS_THRESHOLD]) / len(scores) * 100),
            common_misconceptions=misconceptions.most_common(5),
            score_distribution=[
                (label, len([s for s in scores if low <= round(s) <= high]))
                for label, low, high in SCORE_RANGES
            ],
        )

    # --- Snapshots ---

    def snapshot(self) -> dict:
        return {
            "items": [item.to_dict() for item in self._items],
            "saved": sorted(self._saved),
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> "BatchQueue":
        queue = cls()
        queue._load(ScanItem.from_dict(d) for d in data.get("items", []))
        queue._saved = {item_id for item_id in data.get("saved", []) if item_id in queue}
        return queue

    def _load(self, items: Iterable[ScanItem]):
        self._items = []
        for item in items:
            # In-flight work cannot survive a restart
            if item.status == ItemStatus.ANALYZING:
                item = item.copy(status=ItemStatus.READY if item.student_id else ItemStatus.PENDING)
            elif item.status == ItemStatus.IDENTIFYING:
                item = item.copy(status=ItemStatus.PENDING)
            self._items.append(item)
