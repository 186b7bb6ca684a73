"""Data model shared by the recognition pipeline and its outputs."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import List, Optional

_NON_LETTERS_RE = re.compile(r"[^A-Z]+")

# Readings of 12+ letters are never a plausible captcha answer.
MAX_CANDIDATE_LENGTH = 12

WHOLE_IMAGE = "whole_image"
SEGMENTED = "segmented"
MODES = (WHOLE_IMAGE, SEGMENTED)

ACCEPTED = "accepted"
BEST_EFFORT = "best_effort"
EMPTY = "empty"


def letters_only(text: Optional[str]) -> str:
    """Strip everything except uppercase A-Z."""
    return _NON_LETTERS_RE.sub("", text or "")


@dataclass(frozen=True)
class PreprocessingProfile:
    """Transform parameters applied to an image before recognition."""
    scale: float = 1.0
    resize_height: Optional[int] = None
    invert: bool = False
    blur: float = 0.0
    contrast: float = 0.0
    threshold_max: Optional[int] = None
    autocrop: bool = False
    preprocess: bool = True


@dataclass(frozen=True)
class BoundingBox:
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return max(0, self.right - self.left)

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top)


@dataclass(frozen=True)
class WordCandidate:
    text: str
    confidence: float


@dataclass(frozen=True)
class SymbolCandidate:
    char: str
    confidence: float
    bbox: BoundingBox


@dataclass(frozen=True)
class RecognitionResult:
    """Normalized output of one recognition call."""
    full_text: str
    full_confidence: float
    words: List[WordCandidate] = field(default_factory=list)
    symbols: List[SymbolCandidate] = field(default_factory=list)


@dataclass(frozen=True)
class Segment:
    """Contiguous run of ink columns; `end` is inclusive."""
    start: int
    end: int

    @property
    def width(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class Glyph:
    char: str
    confidence: float
    width: int


@dataclass(frozen=True)
class Candidate:
    """Uniform output of every attempt."""
    text: str = ""
    confidence: float = 0.0
    failed: bool = False

    @classmethod
    def from_reading(cls, text: Optional[str], confidence: float) -> "Candidate":
        cleaned = letters_only(text)
        if len(cleaned) >= MAX_CANDIDATE_LENGTH:
            cleaned = ""
        return cls(text=cleaned, confidence=float(confidence) if cleaned else 0.0)

    @classmethod
    def failure(cls) -> "Candidate":
        return cls(text="", confidence=0.0, failed=True)


@dataclass(frozen=True)
class Strategy:
    """One slot of the ordered ensemble: a profile plus a recognition mode."""
    name: str
    profile: PreprocessingProfile
    mode: str = WHOLE_IMAGE
    psm: int = 7


@dataclass
class Attempt:
    strategy: str
    mode: str
    candidate: Candidate
    elapsed: float = 0.0


@dataclass
class SolveResult:
    """Final answer plus the trace of attempts that produced it."""
    solution: str
    outcome: str
    strategy: Optional[str] = None
    attempts: List[Attempt] = field(default_factory=list)

    def to_dict(self, *, trace: bool = True) -> dict:
        if not trace:
            return {"solution": self.solution}
        return asdict(self)
