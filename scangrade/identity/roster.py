"""Matching handwritten names against a class roster."""

import difflib
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from ..config import NAME_MATCH_HIGH, NAME_MATCH_MEDIUM


@dataclass(frozen=True)
class RosterEntry:
    id: str
    display_name: str


@dataclass(frozen=True)
class NameMatch:
    entry: RosterEntry
    score: float
    confidence: str  # high | medium


def _normalize(name: str) -> str:
    name = re.sub(r"[^a-z\s'-]", " ", name.lower())
    return " ".join(name.split())


def _variants(display_name: str) -> list[str]:
    """The name as written plus "last first" and "last, first" orderings."""
    base = _normalize(display_name)
    parts = base.split()
    variants = [base]
    if len(parts) >= 2:
        variants.append(" ".join(parts[1:] + parts[:1]))
        variants.append(" ".join(parts[-1:] + parts[:-1]))
    return variants


def match_student_name(name: Optional[str], roster: Sequence[RosterEntry]) -> Optional[NameMatch]:
    """
    Find the roster entry closest to a handwritten name.

    Returns:
        The best match when its similarity reaches NAME_MATCH_MEDIUM and it
        is not tied with a different student, otherwise None
    """
    if not name or not roster:
        return None
    written = _normalize(name)
    if not written:
        return None

    SM = difflib.SequenceMatcher
    scored = []
    for entry in roster:
        score = max(SM(None, written, v).ratio() for v in _variants(entry.display_name))
        scored.append((score, entry))
    scored.sort(key=lambda pair: pair[0], reverse=True)

    best_score, best_entry = scored[0]
    if best_score < NAME_MATCH_MEDIUM:
        return None
    # Two students equally close is an ambiguity, not a match
    if len(scored) > 1 and scored[1][0] == best_score and scored[1][1].id != best_entry.id:
        return None

    confidence = "high" if best_score >= NAME_MATCH_HIGH else "medium"
    return NameMatch(entry=best_entry, score=best_score, confidence=confidence)
