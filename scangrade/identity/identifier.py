"""Resolve which student (and question) a scanned page belongs to.

QR codes are tried first. Without a recognized code, the handwritten
name is read and matched against the roster. Pages that match nothing
stay unassigned for a teacher to label by hand.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..batch.models import IdentificationSource
from ..errors import IdentificationFailure, OracleFailure
from ..grading.oracle import HandwritingOracle
from .qr_codec import StudentPageCode, StudentQuestionCode
from .qr_scanner import QRReader
from .roster import RosterEntry, match_student_name

logger = logging.getLogger("scangrade.identity")


@dataclass
class IdentificationOutcome:
    source: IdentificationSource
    confidence: str
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    question_id: Optional[str] = None
    qr_code_detected: bool = False
    qr_content: Optional[str] = None
    page_number: Optional[int] = None
    total_pages: Optional[int] = None
    handwritten_name: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.student_id is not None


class StudentIdentifier:
    """Identify pages via QR code, then handwritten name."""

    def __init__(self, qr_reader: Optional[QRReader] = None, name_reader: Optional[HandwritingOracle] = None):
        self.qr_reader = qr_reader or QRReader()
        self.name_reader = name_reader

    async def identify(self, image, roster: Sequence[RosterEntry] = ()) -> IdentificationOutcome:
        """
        Identify one page. Never raises for an unidentifiable page.

        Args:
            image: Page image (path or bytes)
            roster: Students in the class; QR ids outside a non-empty roster are rejected
        """
        try:
            return await self._identify(image, roster)
        except IdentificationFailure as e:
            logger.info("Page not identified: %s", e)
            return IdentificationOutcome(source=IdentificationSource.HANDWRITING, confidence="none",
                                         qr_code_detected=e.qr_code_detected)

    async def _identify(self, image, roster: Sequence[RosterEntry]) -> IdentificationOutcome:
        # pyzbar decoding is CPU-bound; keep it off the event loop
        raw, payload = await asyncio.to_thread(self.qr_reader.read, image)
        roster_by_id = {entry.id: entry for entry in roster}

        if payload is not None:
            if roster_by_id and payload.student_id not in roster_by_id:
                logger.warning("QR student %s is not on the roster; trying handwriting", payload.student_id)
            else:
                entry = roster_by_id.get(payload.student_id)
                return IdentificationOutcome(
                    source=IdentificationSource.QR,
                    confidence="high",
                    student_id=payload.student_id,
                    student_name=entry.display_name if entry else None,
                    question_id=payload.question_id if isinstance(payload, StudentQuestionCode) else None,
                    qr_code_detected=True,
                    qr_content=raw,
                    page_number=payload.page_number if isinstance(payload, StudentPageCode) else None,
                    total_pages=payload.total_pages if isinstance(payload, StudentPageCode) else None,
                )
        elif raw is not None:
            logger.info("QR code found but not recognized; falling back to handwriting")

        if self.name_reader is None or not roster:
            raise IdentificationFailure("No recognized QR code and no name reader/roster available",
                                        qr_code_detected=raw is not None)

        try:
            name = await self.name_reader.read_name(image)
        except OracleFailure as e:
            raise IdentificationFailure(f"Name reading failed: {e}", qr_code_detected=raw is not None) from e

        match = match_student_name(name, roster)
        if match is None:
            return IdentificationOutcome(
                source=IdentificationSource.HANDWRITING,
                confidence="none",
                qr_code_detected=raw is not None,
                qr_content=raw,
                handwritten_name=name,
            )

        return IdentificationOutcome(
            source=IdentificationSource.HANDWRITING,
            confidence=match.confidence,
            student_id=match.entry.id,
            student_name=match.entry.display_name,
            qr_code_detected=raw is not None,
            qr_content=raw,
            handwritten_name=name,
        )
