"""Who a scanned page belongs to: QR codes, roster name matching."""

from .qr_codec import StudentCode, StudentPageCode, StudentQuestionCode, decode, encode, make_qr_image
from .roster import RosterEntry, match_student_name
from .identifier import IdentificationOutcome, StudentIdentifier

__all__ = [
    "StudentCode",
    "StudentPageCode",
    "StudentQuestionCode",
    "decode",
    "encode",
    "make_qr_image",
    "RosterEntry",
    "match_student_name",
    "IdentificationOutcome",
    "StudentIdentifier",
]
