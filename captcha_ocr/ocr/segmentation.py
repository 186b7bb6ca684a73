"""Per-glyph recognition via a vertical ink-density projection.

Used when whole-image OCR is unreliable: columns with enough dark pixels
are grouped into segments, each segment is cropped and recognized as a
single character, and the surviving glyphs are joined left to right.
"""

from __future__ import annotations

import logging
import time
from statistics import median
from typing import Iterator, List, Optional, Sequence

import numpy as np

from ..errors import RecognitionFailure
from ..pipeline.schemas import Candidate, Glyph, PreprocessingProfile, Segment, letters_only
from .images import apply_profile, autocrop, pad, to_grey
from .selector import LEADING_NOISE_CHAR, LEADING_NOISE_MAX_CONFIDENCE
from .tesseract import PSM_SINGLE_CHAR, UPPERCASE_WHITELIST

LOGGER = logging.getLogger("captcha_ocr.ocr")

INK_LEVEL = 128
ACTIVITY_RATIO = 0.02
MIN_SEGMENT_WIDTH = 6
MIN_SEGMENT_RATIO = 0.02
MERGE_ABOVE = 6
MERGE_GAP = 3
MIN_GLYPHS = 4
MAX_GLYPHS = 5
MIN_GLYPH_CONFIDENCE = 8
MIN_WIDTH_RATIO = 0.6
CROP_PADDING = 10

DEFAULT_SEGMENTATION_PROFILE = PreprocessingProfile(
    resize_height=150, autocrop=True, contrast=0.5, threshold_max=180
)


def ink_projection(grey: np.ndarray) -> np.ndarray:
    """Count ink pixels (darker than mid-grey) in every column."""
    return (grey < INK_LEVEL).sum(axis=0)


def _iter_runs(active: Sequence[bool]) -> Iterator[Segment]:
    start = None
    for x, on in enumerate(active):
        if on and start is None:
            start = x
        elif not on and start is not None:
            yield Segment(start, x - 1)
            start = None
    if start is not None:
        yield Segment(start, len(active) - 1)


def merge_close_segments(segments: List[Segment], max_gap: int = MERGE_GAP) -> List[Segment]:
    """Join neighbours separated by at most `max_gap` blank columns."""
    merged: List[Segment] = []
    for seg in segments:
        if merged and seg.start - merged[-1].end - 1 <= max_gap:
            merged[-1] = Segment(merged[-1].start, seg.end)
        else:
            merged.append(seg)
    return merged


def find_segments(grey: np.ndarray) -> List[Segment]:
    """Locate glyph-sized column bands in a binarized greyscale image."""
    height, width = grey.shape[:2]
    projection = ink_projection(grey)
    activity = max(1, int(height * ACTIVITY_RATIO))
    min_width = max(MIN_SEGMENT_WIDTH, int(width * MIN_SEGMENT_RATIO))

    segments = [seg for seg in _iter_runs(projection > activity) if seg.width >= min_width]
    if len(segments) > MERGE_ABOVE:
        segments = merge_close_segments(segments)
    return sorted(segments, key=lambda s: s.start)


def choose_segments(segments: List[Segment]) -> List[Segment]:
    """Keep the leftmost glyph candidates; captchas here are 4-5 letters long."""
    return segments[:MAX_GLYPHS]


def _read_glyph(engine, crop: np.ndarray, width: int):
    result = engine.recognize(crop)
    for symbol in result.symbols:
        char = letters_only(symbol.char)
        if char:
            return Glyph(char=char[0], confidence=float(symbol.confidence), width=width)
    text = letters_only(result.full_text)
    if text:
        return Glyph(char=text[0], confidence=float(result.full_confidence), width=width)
    return None


def recognize_glyphs(
    grey: np.ndarray, segments: List[Segment], engine, deadline: Optional[float] = None
) -> List[Glyph]:
    """Recognize each segment as a single character with an already configured engine."""
    glyphs: List[Glyph] = []
    for seg in segments:
        if deadline is not None and time.monotonic() >= deadline:
            raise RecognitionFailure(f"deadline reached after {len(glyphs)} glyphs")
        crop = autocrop(grey[:, seg.start : seg.end + 1])
        glyph = _read_glyph(engine, pad(crop, CROP_PADDING), seg.width)
        if glyph is not None:
            glyphs.append(glyph)
    return glyphs


def prune_glyphs(glyphs: List[Glyph]) -> List[Glyph]:
    """Drop leading noise and weak extras, then faint or narrow glyphs."""
    if not glyphs:
        return []
    median_width = median(g.width for g in glyphs)
    kept = list(glyphs)
    if (
        len(kept) >= MAX_GLYPHS
        and kept[0].char == LEADING_NOISE_CHAR
        and kept[0].confidence < LEADING_NOISE_MAX_CONFIDENCE
    ):
        kept = kept[1:]
    while len(kept) > MIN_GLYPHS:
        weakest = min(range(len(kept)), key=lambda i: kept[i].confidence)
        del kept[weakest]
    return [
        g
        for g in kept
        if g.confidence >= MIN_GLYPH_CONFIDENCE
        and (median_width == 0 or g.width >= MIN_WIDTH_RATIO * median_width)
    ]


def segment_and_recognize(
    image: np.ndarray,
    engine,
    *,
    profile: PreprocessingProfile = DEFAULT_SEGMENTATION_PROFILE,
    whitelist: str = UPPERCASE_WHITELIST,
    deadline: Optional[float] = None,
) -> Candidate:
    """Recognize `image` glyph by glyph.

    Preprocessing and engine errors propagate to the caller. An empty
    Candidate (not failed) means no glyph survived the filters.
    """
    grey = to_grey(apply_profile(image, profile))
    segments = choose_segments(find_segments(grey))
    LOGGER.debug("Segmentation found %s glyph columns", len(segments))
    if not segments:
        return Candidate()

    engine.configure(whitelist=whitelist, psm=PSM_SINGLE_CHAR, deadline=deadline)
    glyphs = prune_glyphs(recognize_glyphs(grey, segments, engine, deadline))
    if not glyphs:
        return Candidate()
    text = "".join(g.char for g in glyphs)
    confidence = round(sum(g.confidence for g in glyphs) / len(glyphs))
    return Candidate(text=text, confidence=float(confidence))
