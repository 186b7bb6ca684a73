"""Deterministic clean-up applied to the chosen answer."""

from __future__ import annotations

from typing import Mapping, Optional

from ..pipeline.schemas import letters_only


def apply_corrections(text: str, corrections: Optional[Mapping[str, str]]) -> str:
    """Replace known misreadings with their true values.

    The table comes from configuration and is empty by default. Entries are
    overfit to specific observed failures, so keep it short and documented;
    they are applied in table order.
    """
    for bad, good in (corrections or {}).items():
        if bad and bad in text:
            text = text.replace(bad, good)
    return text


def trim_leading_noise(text: str) -> str:
    # "CXXXE" is usually a spurious leading C in front of a 4-letter answer.
    if len(text) > 4 and text.startswith("C") and text.endswith("E") and len(text[1:]) == 4:
        return text[1:]
    return text


def normalize_solution(text: str, corrections: Optional[Mapping[str, str]] = None) -> str:
    text = letters_only(text)
    text = letters_only(apply_corrections(text, corrections))
    return trim_leading_noise(text)
