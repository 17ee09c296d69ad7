"""Claude Vision-powered grading for scanned student work."""

import logging
from typing import Optional

from ..errors import OracleFailure
from .claude_client import ClaudeClient, image_block
from .oracle import GradingOracle, GradingRequest
from .results import RubricResult

logger = logging.getLogger("scangrade.grading")

RESPONSE_FORMAT = """Respond in JSON format:
{
    "problem_identified": "Short name of the problem or topic being solved",
    "rubric_scores": [
        {
            "criterion": "What this rubric step checks",
            "score": points earned for this step,
            "max_score": points available for this step,
            "feedback": "What the student did well or missed on this step"
        }
    ],
    "total_score": {"earned": total points earned, "possible": total points available},
    "feedback": "Overall feedback for the student",
    "misconceptions": ["Each distinct misconception shown in the work"],
    "standard": "Learning standard addressed, or null",
    "grade_justification": "One or two sentences explaining the grade"
}"""


def _format_rubric(request: GradingRequest) -> str:
    if not request.rubric_steps:
        return "No rubric was provided. Build a reasonable 3-5 step rubric for the problem and grade against it."
    return "\n".join(
        f"{step.step_number}. {step.description} ({step.points:g} pts)"
        for step in request.rubric_steps
    )


class ClaudeVisionGrader(GradingOracle):
    """Grade scanned student work using Claude Vision.

    ``mode="ai"`` lets the model judge the work on its own.
    ``mode="teacher"`` grades against the teacher's answer sample and
    prior grading style when the request carries them.
    """

    def __init__(self, client: ClaudeClient, mode: str = "ai"):
        if mode not in ("ai", "teacher"):
            raise ValueError(f"Unknown grading mode: {mode}")
        self.client = client
        self.mode = mode

    def _build_prompt(self, request: GradingRequest) -> str:
        sections = [
            "You are grading a student's handwritten math work. Analyze the scanned page(s) carefully; "
            "several pages are one submission in order.",
            f"RUBRIC:\n{_format_rubric(request)}",
        ]
        if request.prompt_text:
            sections.append(f"PROBLEM TEXT:\n{request.prompt_text}")
        if self.mode == "teacher":
            if request.reference_image is not None:
                sections.append(
                    "The LAST image is the teacher's worked solution. Grade the student's work "
                    "(every image before it) against it, accepting equivalent valid methods."
                )
            if request.prior_grading_style:
                sections.append(f"TEACHER'S GRADING STYLE:\n{request.prior_grading_style}")

        sections.append("""Instructions:
1. Read the student's handwritten work, including any work shown
2. Score every rubric step; never award more than a step's points
3. For math, accept equivalent forms (e.g., 1/2 = 0.5)
4. A blank page or a page that only asks for help earns 0 on every step
5. List misconceptions as short phrases, not sentences""")
        sections.append(RESPONSE_FORMAT)
        return "\n\n".join(sections)

    async def invoke(self, image, request: GradingRequest) -> RubricResult:
        """Grade one submission. ``image`` may be a list of pages, first page first."""
        pages = list(image) if isinstance(image, (list, tuple)) else [image]
        try:
            content = [image_block(page) for page in pages]
            if self.mode == "teacher" and request.reference_image is not None:
                content.append(image_block(request.reference_image))
        except OSError as e:
            raise OracleFailure(f"Could not read scan: {e}", transient=False) from e
        content.append({"type": "text", "text": self._build_prompt(request)})

        data = await self.client.ask_json(content)
        try:
            result = RubricResult.from_dict(data)
        except (ValueError, TypeError) as e:
            raise OracleFailure(f"Malformed grading response: {e}") from e

        if not result.rubric_scores and result.total_score.possible <= 0:
            raise OracleFailure("Grading response contained no scores")

        logger.debug("Graded page: %.1f%% (%d criteria)",
                     result.total_score.percentage, len(result.rubric_scores))
        return result


def make_grader(client: Optional[ClaudeClient] = None, mode: str = "ai") -> ClaudeVisionGrader:
    """Build a Claude grader, creating a client when none is shared."""
    return ClaudeVisionGrader(client or ClaudeClient(), mode=mode)
