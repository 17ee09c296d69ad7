"""Drive a batch through identification, grouping and grading.

One pipeline owns one queue. Identification runs concurrently across
items, bounded by a semaphore. Grading is serialized: one item at a time
in batch order, so load on the grading service stays bounded and partial
failures happen in a predictable order.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from ..config import IDENTIFY_CONCURRENCY
from ..errors import OracleFailure
from ..grading.oracle import GradingRequest
from ..grading.reconciliation import ConfidenceReconciler
from ..identity.identifier import IdentificationOutcome, StudentIdentifier
from ..identity.roster import RosterEntry
from .grouping import GroupingResult, PageGrouper
from .models import Identification, IdentificationSource, ItemStatus, PageType, ScanItem
from .queue import BatchQueue

logger = logging.getLogger("scangrade.pipeline")


@dataclass
class AnalysisReport:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _identification_from(outcome: IdentificationOutcome) -> Identification:
    return Identification(
        source=outcome.source,
        confidence=outcome.confidence,
        qr_code_detected=outcome.qr_code_detected,
        qr_content=outcome.qr_content,
        page_number=outcome.page_number,
        total_pages=outcome.total_pages,
        handwritten_name=outcome.handwritten_name,
    )


class BatchPipeline:
    """Runs identification and grading over a BatchQueue."""

    def __init__(self, queue: BatchQueue, identifier: StudentIdentifier, reconciler: ConfidenceReconciler,
                 grouper: Optional[PageGrouper] = None, concurrency: int = IDENTIFY_CONCURRENCY):
        self.queue = queue
        self.identifier = identifier
        self.reconciler = reconciler
        self.grouper = grouper or PageGrouper(queue)
        self.concurrency = max(1, concurrency)

    # --- Identification ---

    async def identify_item(self, item_id: str, roster: Sequence[RosterEntry] = ()) -> Optional[ItemStatus]:
        """Identify one item; it ends up ready or unassigned."""
        item = self.queue.get(item_id)
        previous_status = item.status
        self.queue.transition(item_id, ItemStatus.IDENTIFYING)
        try:
            outcome = await self.identifier.identify(item.image, roster)
        except asyncio.CancelledError:
            if item_id in self.queue:
                self.queue.transition(item_id, previous_status)
            raise
        except Exception as e:
            logger.exception("Identification crashed for item %s", item_id)
            if item_id not in self.queue:
                return None
            self.queue.transition(item_id, ItemStatus.UNASSIGNED, error=f"Identification error: {e}")
            return ItemStatus.UNASSIGNED

        if item_id not in self.queue:
            # Removed while identification was in flight
            return None
        current = self.queue.get(item_id)
        manual = current.identification and current.identification.source == IdentificationSource.MANUAL
        if current.student_id and manual:
            # A teacher labelled the page meanwhile; keep their choice
            self.queue.transition(item_id, ItemStatus.READY)
            return ItemStatus.READY

        identification = _identification_from(outcome)
        if outcome.matched:
            self.queue.transition(
                item_id, ItemStatus.READY,
                student_id=outcome.student_id,
                student_name=outcome.student_name or current.student_name,
                question_id=outcome.question_id or current.question_id,
                identification=identification,
                auto_assigned=True,
                error=None,
            )
            logger.info("Item %s identified as %s via %s (%s)",
                        item_id, outcome.student_id, outcome.source.value, outcome.confidence)
            return ItemStatus.READY

        self.queue.transition(item_id, ItemStatus.UNASSIGNED, identification=identification)
        logger.info("Item %s left unassigned", item_id)
        return ItemStatus.UNASSIGNED

    async def identify_all(self, roster: Sequence[RosterEntry] = ()) -> dict[str, int]:
        """
        Identify every item that has no student yet.

        Items labelled by hand skip identification and go straight to ready.

        Returns:
            Counts of items that ended ready and unassigned
        """
        targets = []
        for item in self.queue.items:
            if item.student_id:
                if item.status == ItemStatus.PENDING:
                    self.queue.transition(item.id, ItemStatus.READY)
                continue
            if item.status in (ItemStatus.PENDING, ItemStatus.UNASSIGNED):
                targets.append(item.id)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(item_id):
            async with semaphore:
                if item_id not in self.queue:
                    return None
                return await self.identify_item(item_id, roster)

        self.queue.is_identifying = True
        try:
            statuses = await asyncio.gather(*(run(item_id) for item_id in targets))
        finally:
            self.queue.is_identifying = False

        summary = {
            "ready": sum(1 for s in statuses if s == ItemStatus.READY),
            "unassigned": sum(1 for s in statuses if s == ItemStatus.UNASSIGNED),
        }
        logger.info("Identified %d item(s): %d ready, %d unassigned",
                    len(targets), summary["ready"], summary["unassigned"])
        return summary

    async def group_pages(self) -> GroupingResult:
        return await self.grouper.auto_group()

    # --- Grading ---

    def _pages_for(self, item: ScanItem):
        continuations = self.queue.continuations_of(item.id)
        if not continuations:
            return item.image
        return [item.image] + [page.image for page in continuations]

    async def analyze_item(self, item_id: str, request: GradingRequest) -> Optional[ScanItem]:
        """
        Grade one item. Oracle failures mark it failed; cancellation restores
        the status it had before the call. Returns None if the item was
        removed while it was being graded.

        Raises:
            ValueError: If the item is a continuation page
            asyncio.CancelledError: Re-raised after the item is restored
        """
        item = self.queue.get(item_id)
        if item.is_continuation:
            raise ValueError(f"Item {item_id} is a continuation page; grade its primary instead")

        previous_status = item.status
        request = replace(
            request,
            question_id=item.question_id or request.question_id,
            student_name=item.student_name or request.student_name,
        )
        self.queue.transition(item_id, ItemStatus.ANALYZING, error=None)

        try:
            result = await self.reconciler.grade_item(self._pages_for(item), request)
        except asyncio.CancelledError:
            if item_id in self.queue:
                self.queue.transition(item_id, previous_status, error=item.error)
            logger.info("Grading of item %s cancelled", item_id)
            raise
        except OracleFailure as e:
            logger.warning("Grading failed for item %s: %s", item_id, e)
            if item_id not in self.queue:
                return None
            return self.queue.transition(item_id, ItemStatus.FAILED, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error grading item %s", item_id)
            if item_id not in self.queue:
                return None
            return self.queue.transition(item_id, ItemStatus.FAILED, error=f"Unexpected error: {e}")

        if item_id not in self.queue:
            logger.info("Item %s was removed while being graded; result dropped", item_id)
            return None
        current = self.queue.get(item_id)
        if current.result is not None and current.result.is_overridden:
            result = replace(result, overridden_grade=current.result.overridden_grade,
                             override_justification=current.result.override_justification)
        return self.queue.transition(item_id, ItemStatus.COMPLETED, result=result, error=None)

    async def _analyze(self, item_ids: list[str], request: GradingRequest) -> AnalysisReport:
        report = AnalysisReport()
        self.queue.is_processing = True
        try:
            for item_id in item_ids:
                if item_id not in self.queue:
                    continue
                item = self.queue.get(item_id)
                # Continuations go with their primary; conflicting pages wait for a teacher
                if item.page_type in (PageType.CONTINUATION, PageType.UNASSIGNED) or (
                        item.result is not None and item.result.is_overridden):
                    report.skipped.append(item_id)
                    continue
                self.queue.current_index = [i.id for i in self.queue.items].index(item_id)
                graded = await self.analyze_item(item_id, request)
                if graded is None:
                    report.skipped.append(item_id)
                elif graded.status == ItemStatus.COMPLETED:
                    report.completed.append(item_id)
                else:
                    report.failed.append(item_id)
        finally:
            self.queue.is_processing = False
            self.queue.current_index = -1

        logger.info("Grading finished: %d completed, %d failed, %d skipped",
                    len(report.completed), len(report.failed), len(report.skipped))
        return report

    async def analyze_all(self, request: GradingRequest) -> AnalysisReport:
        """Grade every item not graded yet, one at a time in batch order."""
        waiting = (ItemStatus.PENDING, ItemStatus.READY, ItemStatus.UNASSIGNED)
        return await self._analyze([item.id for item in self.queue.by_status(*waiting)], request)

    async def retry_failed(self, request: GradingRequest) -> AnalysisReport:
        return await self._analyze([item.id for item in self.queue.by_status(ItemStatus.FAILED)], request)

    async def run(self, request: GradingRequest, roster: Sequence[RosterEntry] = ()) -> AnalysisReport:
        """Identify, group and grade the whole batch."""
        await self.identify_all(roster)
        await self.group_pages()
        return await self.analyze_all(request)
