"""Pick the most trustworthy reading from one recognition result.

Three readings compete, each one only replacing the current pick when it
scores at least as well:

1. the engine's full text,
2. the best plausible-length word,
3. a string rebuilt from individual character boxes after dropping
   low-confidence and undersized glyphs.
"""

from __future__ import annotations

from statistics import median
from typing import Dict, List, Optional

from ..pipeline.schemas import Candidate, RecognitionResult, SymbolCandidate, letters_only

MIN_PLAUSIBLE_LENGTH = 3
MAX_PLAUSIBLE_LENGTH = 10

MIN_SYMBOL_CONFIDENCE = 10
MIN_HEIGHT_RATIO = 0.6

# A faint leading "C" is a frequent artefact of the captcha's left border.
LEADING_NOISE_CHAR = "C"
LEADING_NOISE_MAX_CONFIDENCE = 12

# Rewards for the answer lengths these captchas usually have.
LENGTH_BONUS: Dict[int, float] = {4: 10, 5: 6, 6: 4, 3: 2}
BASELINE_LENGTH_BONUS = 10


def is_plausible_length(text: str) -> bool:
    return MIN_PLAUSIBLE_LENGTH <= len(text) <= MAX_PLAUSIBLE_LENGTH


def _best_word(result: RecognitionResult) -> Optional[Candidate]:
    best: Optional[Candidate] = None
    for word in result.words:
        text = letters_only(word.text)
        if not is_plausible_length(text):
            continue
        if best is None or word.confidence > best.confidence:
            best = Candidate(text=text, confidence=float(word.confidence))
    return best


def filter_symbols(symbols: List[SymbolCandidate]) -> List[SymbolCandidate]:
    """Keep confident, full-height A-Z glyphs ordered left to right."""
    letters = [s for s in symbols if len(s.char) == 1 and "A" <= s.char <= "Z"]
    if not letters:
        return []
    median_height = median(s.bbox.height for s in letters)
    kept = [
        s
        for s in letters
        if s.confidence >= MIN_SYMBOL_CONFIDENCE
        and (median_height == 0 or s.bbox.height >= MIN_HEIGHT_RATIO * median_height)
    ]
    kept.sort(key=lambda s: s.bbox.left)
    if (
        len(kept) > 2
        and kept[0].char == LEADING_NOISE_CHAR
        and kept[0].confidence < LEADING_NOISE_MAX_CONFIDENCE
    ):
        kept = kept[1:]
    return kept


def _symbol_candidate(result: RecognitionResult) -> Optional[Candidate]:
    kept = filter_symbols(result.symbols)
    if not kept:
        return None
    text = "".join(s.char for s in kept)
    confidence = sum(s.confidence for s in kept) / len(kept)
    return Candidate(text=text, confidence=confidence)


def select_candidate(result: RecognitionResult) -> Candidate:
    """Return the best Candidate for a single recognition result."""
    best = Candidate.from_reading(result.full_text, result.full_confidence)

    word = _best_word(result)
    if word is not None and word.confidence >= best.confidence:
        best = word

    symbol = _symbol_candidate(result)
    if symbol is not None and is_plausible_length(symbol.text):
        symbol_score = symbol.confidence + LENGTH_BONUS.get(len(symbol.text), 0)
        baseline_score = best.confidence + (BASELINE_LENGTH_BONUS if len(best.text) == 4 else 0)
        if symbol_score >= baseline_score:
            best = symbol

    return best
