"""Solver configuration: the versioned strategy table plus decision thresholds."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .schemas import MODES, WHOLE_IMAGE, Candidate, PreprocessingProfile, Strategy

DEFAULTS_PATH = Path(__file__).resolve().parents[1] / "config" / "defaults.yaml"

_PROFILE_FIELDS = {f.name for f in fields(PreprocessingProfile)}


@dataclass(frozen=True)
class ValidityPolicy:
    """Decides whether a candidate is trustworthy enough to stop early."""
    min_length: int = 3
    max_length: int = 10
    min_confidence: float = 50
    trusted_length: Optional[int] = 4

    def accepts(self, candidate: Candidate) -> bool:
        text = candidate.text
        if candidate.failed or not text:
            return False
        if not self.min_length <= len(text) <= self.max_length:
            return False
        return candidate.confidence > self.min_confidence or len(text) == self.trusted_length


@dataclass
class SolverConfig:
    version: int = 1
    lang: str = "eng"
    oem: int = 3
    whitelist: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    validity: ValidityPolicy = field(default_factory=ValidityPolicy)
    best_effort_min_confidence: float = 30
    timeout_seconds: Optional[float] = 20
    corrections: Dict[str, str] = field(default_factory=dict)
    strategies: List[Strategy] = field(default_factory=list)


def _parse_validity(raw: Dict[str, Any]) -> ValidityPolicy:
    try:
        return ValidityPolicy(**raw)
    except TypeError as exc:
        raise ValueError(f"Invalid validity policy: {exc}") from exc


def _parse_profile(name: str, raw: Optional[Dict[str, Any]]) -> PreprocessingProfile:
    raw = raw or {}
    unknown = set(raw) - _PROFILE_FIELDS
    if unknown:
        raise ValueError(f"Strategy {name!r} has unknown profile keys: {sorted(unknown)}")
    return PreprocessingProfile(**raw)


def _parse_strategy(item: Dict[str, Any]) -> Strategy:
    name = item.get("name")
    if not name:
        raise ValueError("Every strategy needs a name")
    mode = item.get("mode", WHOLE_IMAGE)
    if mode not in MODES:
        raise ValueError(f"Strategy {name!r} has unknown mode {mode!r}")
    return Strategy(
        name=name,
        profile=_parse_profile(name, item.get("profile")),
        mode=mode,
        psm=int(item.get("psm", 7)),
    )


def parse_config(data: Dict[str, Any]) -> SolverConfig:
    """Build a SolverConfig from a parsed YAML mapping."""
    if not isinstance(data, dict):
        raise ValueError("Solver config must be a mapping")
    strategies = [_parse_strategy(item) for item in data.get("strategies") or []]
    if not strategies:
        raise ValueError("Solver config must define at least one strategy")

    ocr_cfg = data.get("ocr") or {}
    validity_cfg = data.get("validity") or {}
    best_effort_cfg = data.get("best_effort") or {}
    corrections = data.get("corrections") or {}
    if not isinstance(corrections, dict):
        raise ValueError("corrections must be a mapping of misreading -> value")

    timeout = data.get("timeout_seconds")
    return SolverConfig(
        version=int(data.get("version", 1)),
        lang=str(ocr_cfg.get("lang", "eng")),
        oem=int(ocr_cfg.get("oem", 3)),
        whitelist=str(ocr_cfg.get("whitelist", "ABCDEFGHIJKLMNOPQRSTUVWXYZ")),
        validity=_parse_validity(validity_cfg),
        best_effort_min_confidence=float(best_effort_cfg.get("min_confidence", 30)),
        timeout_seconds=float(timeout) if timeout else None,
        corrections={str(k): str(v) for k, v in corrections.items()},
        strategies=strategies,
    )


def load_config(path: Optional[Path] = None) -> SolverConfig:
    """Load the strategy table from `path`, $CAPTCHA_CONFIG_PATH, or the packaged defaults."""
    if path is None:
        env_path = (os.getenv("CAPTCHA_CONFIG_PATH") or "").strip()
        path = Path(env_path) if env_path else DEFAULTS_PATH
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return parse_config(data)
