"""Claude Vision handwriting comparison and name reading."""

import logging
from typing import Optional

from ..errors import OracleFailure
from .claude_client import ClaudeClient, image_block
from .oracle import HandwritingMatch, HandwritingOracle

logger = logging.getLogger("scangrade.handwriting")

COMPARE_SYSTEM = """You are an expert forensic handwriting analyst. Your task is to compare handwriting samples from two images to determine if they were written by the SAME PERSON.

This is used for grouping multi-page student work: if the handwriting matches, the pages belong to the same student's paper and are graded together.

Focus on slant, letter size, letter formation and connections, spacing, pressure, baseline, and distinctive features (how 't' is crossed, how 'i' is dotted)."""

COMPARE_PROMPT = """Compare the handwriting in these two images.

Image 1 is one page of student work.
Image 2 is the NEXT PAGE in upload order (possibly the back side or a continuation).

Respond in this exact JSON format:
{
  "is_same_student": true,
  "similarity_score": 85,
  "student_name": "Name written on either page, or null",
  "reasoning": "Which features match or differ"
}

SCORING GUIDE:
- 80-100: High confidence same student
- 60-79: Likely same student
- 40-59: Uncertain
- 0-39: Likely different students"""

NAME_PROMPT = """Find the student's handwritten name on this page (usually near the top).

Respond in this exact JSON format:
{"student_name": "The name exactly as written, or null if there is no name"}"""


def _clean_name(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none", "unknown", "n/a"):
        return None
    return value


class ClaudeHandwritingComparer(HandwritingOracle):
    """Handwriting similarity oracle backed by Claude Vision."""

    def __init__(self, client: ClaudeClient):
        self.client = client

    async def compare(self, image_a, image_b) -> HandwritingMatch:
        try:
            content = [image_block(image_a), image_block(image_b)]
        except OSError as e:
            raise OracleFailure(f"Could not read scan: {e}", transient=False) from e
        content.append({"type": "text", "text": COMPARE_PROMPT})

        data = await self.client.ask_json(content, system=COMPARE_SYSTEM, max_tokens=800)
        try:
            score = float(data.get("similarity_score", 0))
        except (TypeError, ValueError) as e:
            raise OracleFailure(f"Malformed similarity response: {e}") from e

        similarity = min(max(score / 100.0, 0.0), 1.0)
        return HandwritingMatch(
            similarity=similarity,
            extracted_name=_clean_name(data.get("student_name")),
            reasoning=str(data.get("reasoning", "")),
        )

    async def read_name(self, image) -> Optional[str]:
        try:
            content = [image_block(image), {"type": "text", "text": NAME_PROMPT}]
        except OSError as e:
            raise OracleFailure(f"Could not read scan: {e}", transient=False) from e
        data = await self.client.ask_json(content, max_tokens=200)
        return _clean_name(data.get("student_name"))
