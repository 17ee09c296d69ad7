"""Uniform contract over interchangeable grading engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from .results import RubricResult


@dataclass
class RubricStep:
    step_number: int
    description: str
    points: float


@dataclass
class GradingRequest:
    """Everything an engine needs besides the page image."""
    question_id: Optional[str] = None
    rubric_steps: list[RubricStep] = field(default_factory=list)
    reference_image: Optional[object] = None
    prior_grading_style: Optional[str] = None
    prompt_text: Optional[str] = None
    student_name: Optional[str] = None


class GradingOracle(ABC):
    """A scoring engine, invoked as a black box.

    Implementations must raise ``OracleFailure`` for every failure,
    including timeouts, so that the batch can isolate it to one item.
    """

    mode = "ai"

    @abstractmethod
    async def invoke(self, image, request: GradingRequest) -> RubricResult:
        """Grade one page image."""
        raise NotImplementedError


@dataclass
class HandwritingMatch:
    similarity: float
    extracted_name: Optional[str] = None
    reasoning: str = ""


class HandwritingOracle(ABC):
    """Compares the handwriting on two pages."""

    @abstractmethod
    async def compare(self, image_a, image_b) -> HandwritingMatch:
        """Return similarity in [0, 1] for two page images."""
        raise NotImplementedError

    async def read_name(self, image) -> Optional[str]:
        """Read a handwritten student name from a page, if the engine supports it."""
        return None
