"""Link the pages of one physical submission into one gradable unit.

Three strategies run in priority order:

1. QR page index: v3 codes carry (student, page number). Pages of one
   student link to the lowest page. A repeated (student, page) pair is a
   conflict and the later page is flagged unassigned.
2. Shared identity: pages already resolved to the same student without
   page numbers link to the first one seen. Different questions stay
   apart; a page without a question joins the student's first question.
3. Handwriting: an unidentified page links to the page right before it
   when a similarity oracle says the handwriting matches.

Every grouping call is idempotent. Unlinking is the exact inverse of
linking: a primary page that loses its last continuation goes back to
being ungrouped.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import HANDWRITING_SIMILARITY_THRESHOLD
from ..errors import GroupingConflict, OracleFailure
from ..grading.oracle import HandwritingOracle
from .models import ItemStatus, PageType, ScanItem
from .queue import BatchQueue

logger = logging.getLogger("scangrade.grouping")


@dataclass(frozen=True)
class GroupingResult:
    pages_linked: int = 0
    groups_created: int = 0

    def __add__(self, other: "GroupingResult") -> "GroupingResult":
        return GroupingResult(
            self.pages_linked + other.pages_linked,
            self.groups_created + other.groups_created,
        )


def _groupable(item: ScanItem) -> bool:
    return item.page_type not in (PageType.CONTINUATION, PageType.UNASSIGNED)


class PageGrouper:
    """Groups the pages of a batch queue into multi-page submissions."""

    def __init__(self, queue: BatchQueue, similarity_oracle: Optional[HandwritingOracle] = None,
                 threshold: float = HANDWRITING_SIMILARITY_THRESHOLD):
        self.queue = queue
        self.similarity_oracle = similarity_oracle
        self.threshold = threshold
        # (earlier id, later id) pairs the oracle already rejected
        self._rejected_pairs: set[tuple[str, str]] = set()

    # --- Linking primitives ---

    def _link(self, continuation_id: str, primary_id: str) -> bool:
        """Link one page to a primary. Returns True when a new primary was created."""
        primary = self.queue.get(primary_id)
        created = primary.page_type != PageType.PRIMARY
        if created:
            self.queue.apply_changes(primary_id, page_type=PageType.PRIMARY)
        self.queue.apply_changes(continuation_id, page_type=PageType.CONTINUATION, linked_item_id=primary_id)
        logger.debug("Linked %s as continuation of %s", continuation_id, primary_id)
        return created

    def _root(self, item: ScanItem) -> ScanItem:
        if item.is_continuation and item.linked_item_id:
            return self.queue.get(item.linked_item_id)
        return item

    def link_continuation(self, continuation_id: str, primary_id: str):
        """
        Manually link a page as a continuation of another.

        Raises:
            ValueError: If the link would break the page structure
            GroupingConflict: If both pages are resolved to different students
        """
        if continuation_id == primary_id:
            raise ValueError("A page cannot continue itself")
        continuation = self.queue.get(continuation_id)
        primary = self.queue.get(primary_id)
        if primary.is_continuation:
            raise ValueError(f"Item {primary_id} is itself a continuation page")
        if self.queue.continuations_of(continuation_id):
            raise ValueError(f"Item {continuation_id} already has continuation pages")
        if continuation.student_id and primary.student_id and continuation.student_id != primary.student_id:
            raise GroupingConflict(
                f"Pages belong to different students ({continuation.student_id}, {primary.student_id})",
                continuation_id, primary_id,
            )
        if continuation.is_continuation:
            self.unlink_continuation(continuation_id)
        self._link(continuation_id, primary_id)

    def unlink_continuation(self, item_id: str) -> bool:
        """Make a continuation page ungrouped again. Returns False if it was not linked."""
        item = self.queue.get(item_id)
        if not item.is_continuation:
            return False
        primary_id = item.linked_item_id
        self.queue.apply_changes(item_id, page_type=None, linked_item_id=None)
        if primary_id in self.queue and not self.queue.continuations_of(primary_id):
            self.queue.apply_changes(primary_id, page_type=None)
        # A manual unlink should not be undone by the next handwriting pass,
        # which compares each page with the one uploaded before it
        index = [i.id for i in self.queue.items].index(item_id)
        if index > 0:
            self._rejected_pairs.add((self.queue.items[index - 1].id, item_id))
        return True

    def unlink_all_pages(self) -> int:
        """Undo every link in the batch. Returns the number of pages unlinked."""
        count = 0
        for item in self.queue.items:
            if item.is_continuation:
                primary_id = item.linked_item_id
                self.queue.apply_changes(item.id, page_type=None, linked_item_id=None)
                if primary_id in self.queue and self.queue.get(primary_id).page_type == PageType.PRIMARY:
                    self.queue.apply_changes(primary_id, page_type=None)
                count += 1
        self._rejected_pairs.clear()
        return count

    # --- Strategies ---

    def _flag_conflict(self, item: ScanItem, other: ScanItem):
        conflict = GroupingConflict(
            f"Page {item.page_number} for student {item.student_id} already scanned",
            item.id, other.id,
        )
        logger.warning("%s (item %s duplicates %s)", conflict, item.id, other.id)
        changes = {"page_type": PageType.UNASSIGNED, "grouping_conflict": str(conflict)}
        if item.status in (ItemStatus.ANALYZING, ItemStatus.IDENTIFYING):
            self.queue.apply_changes(item.id, **changes)
        else:
            self.queue.transition(item.id, ItemStatus.UNASSIGNED, **changes)

    def group_by_qr_pages(self) -> GroupingResult:
        """Link pages that carry QR page numbers for the same student."""
        pages_by_student: dict[str, dict[int, ScanItem]] = {}
        for item in self.queue.items:
            if item.page_number is None or not item.student_id or item.page_type == PageType.UNASSIGNED:
                continue
            pages = pages_by_student.setdefault(item.student_id, {})
            if item.page_number in pages:
                self._flag_conflict(item, pages[item.page_number])
                continue
            pages[item.page_number] = item

        linked = created = 0
        for student_id, pages in pages_by_student.items():
            if len(pages) < 2:
                continue
            ordered = [pages[n] for n in sorted(pages)]
            primary = self._root(ordered[0])
            if primary.id != ordered[0].id:
                # Lowest page was linked by hand elsewhere; leave this student alone
                continue
            for page in ordered[1:]:
                if page.is_continuation:
                    continue
                if self.queue.continuations_of(page.id):
                    logger.warning("Page %s of student %s already heads its own group", page.page_number, student_id)
                    continue
                created += self._link(page.id, primary.id)
                linked += 1

        if linked:
            logger.info("QR page grouping linked %d page(s) into %d new group(s)", linked, created)
        return GroupingResult(linked, created)

    def group_by_student(self) -> GroupingResult:
        """
        Link unnumbered pages already resolved to the same student.

        Pages naming different questions stay separate submissions. A page
        with no question joins the student's first-seen question.
        """
        first_question: dict[str, str] = {}
        for item in self.queue.items:
            if item.student_id and item.question_id:
                first_question.setdefault(item.student_id, item.question_id)

        groups: dict[tuple, list[ScanItem]] = {}
        for item in self.queue.items:
            if not item.student_id or not _groupable(item):
                continue
            if item.page_number is not None and item.page_type != PageType.PRIMARY:
                continue
            question_id = item.question_id or first_question.get(item.student_id)
            groups.setdefault((item.student_id, question_id), []).append(item)

        linked = created = 0
        for members in groups.values():
            if len(members) < 2:
                continue
            existing = [m for m in members if m.page_type == PageType.PRIMARY]
            primary = existing[0] if existing else members[0]
            for member in members:
                if member.id == primary.id or member.page_type == PageType.PRIMARY:
                    continue
                if self.queue.continuations_of(member.id):
                    continue
                created += self._link(member.id, primary.id)
                linked += 1

        if linked:
            logger.info("Student grouping linked %d page(s) into %d new group(s)", linked, created)
        return GroupingResult(linked, created)

    async def group_by_handwriting(self) -> GroupingResult:
        """Link unidentified pages to the page before them when the handwriting matches."""
        if self.similarity_oracle is None:
            return GroupingResult()

        linked = created = 0
        items = self.queue.items
        for previous, current in zip(items, items[1:]):
            # Re-read both: earlier links in this pass may have changed them
            previous = self.queue.get(previous.id)
            current = self.queue.get(current.id)
            if current.student_id or current.page_type is not None:
                continue
            if previous.page_type == PageType.UNASSIGNED:
                continue
            if self.queue.continuations_of(current.id):
                continue
            pair = (previous.id, current.id)
            if pair in self._rejected_pairs:
                continue

            primary = self._root(previous)

            try:
                match = await self.similarity_oracle.compare(previous.image, current.image)
            except OracleFailure as e:
                logger.warning("Handwriting comparison failed for %s/%s: %s", previous.id, current.id, e)
                continue

            if match.similarity > self.threshold:
                created += self._link(current.id, primary.id)
                linked += 1
                logger.info("Handwriting match %.2f: %s continues %s", match.similarity, current.id, primary.id)
            else:
                self._rejected_pairs.add(pair)

        return GroupingResult(linked, created)

    async def auto_group(self) -> GroupingResult:
        """Run every strategy in priority order."""
        result = self.group_by_qr_pages()
        result += self.group_by_student()
        result += await self.group_by_handwriting()
        return result
