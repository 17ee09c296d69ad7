"""Scan items and their lifecycle states."""

import base64
import enum
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from ..grading.results import GradeResult


class ItemStatus(enum.Enum):
    PENDING = "pending"
    IDENTIFYING = "identifying"
    READY = "ready"
    UNASSIGNED = "unassigned"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class PageType(enum.Enum):
    PRIMARY = "primary"
    CONTINUATION = "continuation"
    UNASSIGNED = "unassigned"


class IdentificationSource(enum.Enum):
    QR = "qr"
    HANDWRITING = "handwriting"
    MANUAL = "manual"


# Allowed edges of the item state machine
TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.IDENTIFYING, ItemStatus.READY, ItemStatus.UNASSIGNED, ItemStatus.ANALYZING},
    ItemStatus.IDENTIFYING: {ItemStatus.READY, ItemStatus.UNASSIGNED, ItemStatus.PENDING},
    ItemStatus.READY: {ItemStatus.IDENTIFYING, ItemStatus.UNASSIGNED, ItemStatus.ANALYZING},
    ItemStatus.UNASSIGNED: {ItemStatus.IDENTIFYING, ItemStatus.READY, ItemStatus.ANALYZING},
    ItemStatus.ANALYZING: {ItemStatus.COMPLETED, ItemStatus.FAILED,
                           ItemStatus.PENDING, ItemStatus.READY, ItemStatus.UNASSIGNED},
    ItemStatus.COMPLETED: {ItemStatus.ANALYZING, ItemStatus.READY, ItemStatus.UNASSIGNED},
    ItemStatus.FAILED: {ItemStatus.ANALYZING, ItemStatus.READY, ItemStatus.UNASSIGNED},
}


def can_transition(current: ItemStatus, new: ItemStatus) -> bool:
    return current == new or new in TRANSITIONS[current]


@dataclass
class Identification:
    source: IdentificationSource
    confidence: str = "none"  # high | medium | low | none
    qr_code_detected: bool = False
    qr_content: Optional[str] = None
    page_number: Optional[int] = None
    total_pages: Optional[int] = None
    handwritten_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source": self.source.value,
            "confidence": self.confidence,
            "qr_code_detected": self.qr_code_detected,
            "qr_content": self.qr_content,
            "page_number": self.page_number,
            "total_pages": self.total_pages,
            "handwritten_name": self.handwritten_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Identification":
        return cls(
            source=IdentificationSource(data["source"]),
            confidence=data.get("confidence", "none"),
            qr_code_detected=data.get("qr_code_detected", False),
            qr_content=data.get("qr_content"),
            page_number=data.get("page_number"),
            total_pages=data.get("total_pages"),
            handwritten_name=data.get("handwritten_name"),
        )


@dataclass
class ScanItem:
    id: str
    image: object  # file path or encoded image bytes
    filename: Optional[str] = None
    status: ItemStatus = ItemStatus.PENDING
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    question_id: Optional[str] = None
    page_type: Optional[PageType] = None
    linked_item_id: Optional[str] = None
    identification: Optional[Identification] = None
    auto_assigned: bool = False
    result: Optional[GradeResult] = None
    error: Optional[str] = None
    saved: bool = False
    grouping_conflict: Optional[str] = None

    @property
    def is_continuation(self) -> bool:
        return self.page_type == PageType.CONTINUATION

    @property
    def page_number(self) -> Optional[int]:
        return self.identification.page_number if self.identification else None

    def copy(self, **changes) -> "ScanItem":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Serialize for session snapshots. Image bytes are base64 encoded."""
        if isinstance(self.image, (bytes, bytearray)):
            image = {"bytes": base64.b64encode(bytes(self.image)).decode("ascii")}
        else:
            image = {"path": str(self.image)}
        return {
            "id": self.id,
            "image": image,
            "filename": self.filename,
            "status": self.status.value,
            "student_id": self.student_id,
            "student_name": self.student_name,
            "question_id": self.question_id,
            "page_type": self.page_type.value if self.page_type else None,
            "linked_item_id": self.linked_item_id,
            "identification": self.identification.to_dict() if self.identification else None,
            "auto_assigned": self.auto_assigned,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "saved": self.saved,
            "grouping_conflict": self.grouping_conflict,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScanItem":
        image = data["image"]
        if "bytes" in image:
            image = base64.b64decode(image["bytes"])
        else:
            image = Path(image["path"])
        return cls(
            id=data["id"],
            image=image,
            filename=data.get("filename"),
            status=ItemStatus(data.get("status", "pending")),
            student_id=data.get("student_id"),
            student_name=data.get("student_name"),
            question_id=data.get("question_id"),
            page_type=PageType(data["page_type"]) if data.get("page_type") else None,
            linked_item_id=data.get("linked_item_id"),
            identification=Identification.from_dict(data["identification"]) if data.get("identification") else None,
            auto_assigned=data.get("auto_assigned", False),
            result=GradeResult.from_dict(data["result"]) if data.get("result") else None,
            error=data.get("error"),
            saved=data.get("saved", False),
            grouping_conflict=data.get("grouping_conflict"),
        )


@dataclass
class BatchSummary:
    total_students: int = 0
    average_score: float = 0
    highest_score: float = 0
    lowest_score: float = 0
    pass_rate: float = 0
    common_misconceptions: list[tuple[str, int]] = field(default_factory=list)
    score_distribution: list[tuple[str, int]] = field(default_factory=list)
