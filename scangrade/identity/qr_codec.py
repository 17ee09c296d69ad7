"""Versioned identity payloads embedded as QR codes on printed pages.

Wire format is a compact JSON object:

    v1  {"v": 1, "s": <student id>, "q": <question id>}
    v2  {"v": 2, "type": "student", "s": <student id>}
    v3  {"v": 3, "type": "student-page", "s": <student id>, "p": <page>, "t": <total pages>}

Anything else is unrecognized. Decoding never raises; an unrecognized
payload only means QR identification is unavailable for that page.
"""

import io
import json
from dataclasses import dataclass
from typing import Optional, Union

import qrcode
from qrcode.constants import ERROR_CORRECT_H

STUDENT_TYPE = "student"
STUDENT_PAGE_TYPE = "student-page"


@dataclass(frozen=True)
class StudentQuestionCode:
    """v1: identifies both the student and the question."""
    student_id: str
    question_id: str
    version = 1


@dataclass(frozen=True)
class StudentCode:
    """v2: identifies only the student."""
    student_id: str
    version = 2


@dataclass(frozen=True)
class StudentPageCode:
    """v3: identifies the student and the page within a multi-page handout."""
    student_id: str
    page_number: int
    total_pages: Optional[int] = None
    version = 3


QRPayload = Union[StudentQuestionCode, StudentCode, StudentPageCode]


def encode(payload: QRPayload) -> str:
    """Serialize a payload to its QR wire string."""
    if isinstance(payload, StudentPageCode):
        data = {"v": 3, "type": STUDENT_PAGE_TYPE, "s": payload.student_id, "p": payload.page_number}
        if payload.total_pages is not None:
            data["t"] = payload.total_pages
    elif isinstance(payload, StudentCode):
        data = {"v": 2, "type": STUDENT_TYPE, "s": payload.student_id}
    elif isinstance(payload, StudentQuestionCode):
        data = {"v": 1, "s": payload.student_id, "q": payload.question_id}
    else:
        raise TypeError(f"Not a QR payload: {payload!r}")
    return json.dumps(data, separators=(",", ":"))


def _is_text(value) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _is_count(value) -> bool:
    # bool is an int subclass; true/false are never page numbers
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def decode(raw) -> Optional[QRPayload]:
    """
    Parse a QR wire string.

    Args:
        raw: Text (or UTF-8 bytes) read from a QR code

    Returns:
        The newest payload version whose required fields are all present,
        or None when the input is not a recognized identity code
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(raw, str):
        return None

    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None

    version = data.get("v")
    if isinstance(version, bool) or not isinstance(version, int):
        return None

    student_id = data.get("s")
    if not _is_text(student_id):
        return None

    if version == 3 and data.get("type") == STUDENT_PAGE_TYPE and _is_count(data.get("p")):
        total = data.get("t")
        if total is not None and not _is_count(total):
            return None
        return StudentPageCode(student_id, data["p"], total)

    if version == 2 and data.get("type") == STUDENT_TYPE:
        return StudentCode(student_id)

    if version == 1 and _is_text(data.get("q")):
        return StudentQuestionCode(student_id, data["q"])

    return None


def make_qr_image(payload: QRPayload, box_size: int = 4, border: int = 1) -> bytes:
    """Render a payload as PNG bytes for embedding in printed pages."""
    qr = qrcode.QRCode(version=None, error_correction=ERROR_CORRECT_H, box_size=box_size, border=border)
    qr.add_data(encode(payload))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
