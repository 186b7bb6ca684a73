"""Ensemble strategy runner and solver entry points.

Strategies run strictly in order. The first candidate that passes the
validity policy is returned; otherwise the most confident candidate seen is
returned if it clears the best-effort floor, else an empty answer.
"""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import List, Optional

import numpy as np

from ..errors import CaptchaError
from ..io.loaders import decode_payload, load_image_from_bytes
from ..ocr.images import apply_profile
from ..ocr.normalize import normalize_solution
from ..ocr.segmentation import segment_and_recognize
from ..ocr.selector import select_candidate
from ..ocr.tesseract import engine_provider
from .config import SolverConfig, load_config
from .schemas import ACCEPTED, BEST_EFFORT, EMPTY, SEGMENTED, Attempt, Candidate, SolveResult, Strategy

LOGGER = logging.getLogger("captcha_ocr.pipeline")


@lru_cache(maxsize=1)
def default_config() -> SolverConfig:
    return load_config()


class StrategyRunner:
    """Runs the configured strategies against one image at a time."""

    def __init__(self, config: Optional[SolverConfig] = None, provider=None) -> None:
        self.config = config or default_config()
        self.provider = provider or engine_provider(lang=self.config.lang, oem=self.config.oem)

    def _whole_image(self, image: np.ndarray, strategy: Strategy, deadline: Optional[float]) -> Candidate:
        processed = apply_profile(image, strategy.profile)
        with self.provider.session() as engine:
            engine.configure(whitelist=self.config.whitelist, psm=strategy.psm, deadline=deadline)
            result = engine.recognize(processed)
        return select_candidate(result)

    def _segmented(self, image: np.ndarray, strategy: Strategy, deadline: Optional[float]) -> Candidate:
        with self.provider.session() as engine:
            return segment_and_recognize(
                image, engine, profile=strategy.profile, whitelist=self.config.whitelist, deadline=deadline
            )

    def run_strategy(self, image: np.ndarray, strategy: Strategy, deadline: Optional[float] = None) -> Candidate:
        """Run one strategy; any error, including an expired deadline, becomes a failed candidate."""
        try:
            if strategy.mode == SEGMENTED:
                return self._segmented(image, strategy, deadline)
            return self._whole_image(image, strategy, deadline)
        except CaptchaError as exc:
            LOGGER.warning("Strategy %s failed: %s", strategy.name, exc)
        except Exception:
            LOGGER.exception("Strategy %s raised unexpectedly", strategy.name)
        return Candidate.failure()

    def run(self, image: np.ndarray, *, timeout: Optional[float] = None) -> SolveResult:
        config = self.config
        if timeout is None:
            timeout = config.timeout_seconds
        deadline = time.monotonic() + timeout if timeout else None

        attempts: List[Attempt] = []
        best: Optional[Attempt] = None
        for strategy in config.strategies:
            if deadline is not None and time.monotonic() >= deadline:
                LOGGER.warning("Deadline reached after %s attempts", len(attempts))
                break
            started = time.monotonic()
            candidate = self.run_strategy(image, strategy, deadline)
            attempt = Attempt(
                strategy=strategy.name,
                mode=strategy.mode,
                candidate=candidate,
                elapsed=round(time.monotonic() - started, 4),
            )
            attempts.append(attempt)
            LOGGER.debug(
                "Strategy %s -> %r (confidence %.1f)", strategy.name, candidate.text, candidate.confidence
            )

            if config.validity.accepts(candidate):
                solution = normalize_solution(candidate.text, config.corrections)
                LOGGER.info("Accepted %r from strategy %s", solution, strategy.name)
                return SolveResult(solution=solution, outcome=ACCEPTED, strategy=strategy.name, attempts=attempts)

            if candidate.text and not candidate.failed:
                if best is None or candidate.confidence > best.candidate.confidence:
                    best = attempt

        if best is not None and best.candidate.confidence > config.best_effort_min_confidence:
            solution = normalize_solution(best.candidate.text, config.corrections)
            LOGGER.info("Best effort %r from strategy %s", solution, best.strategy)
            return SolveResult(solution=solution, outcome=BEST_EFFORT, strategy=best.strategy, attempts=attempts)

        LOGGER.info("No strategy produced a usable answer (%s attempts)", len(attempts))
        return SolveResult(solution="", outcome=EMPTY, attempts=attempts)


def solve_image(
    image: np.ndarray,
    *,
    config: Optional[SolverConfig] = None,
    provider=None,
    timeout: Optional[float] = None,
) -> SolveResult:
    """Solve an already decoded RGB image."""
    return StrategyRunner(config, provider).run(image, timeout=timeout)


def solve_bytes(
    file_bytes: bytes,
    *,
    config: Optional[SolverConfig] = None,
    provider=None,
    timeout: Optional[float] = None,
) -> SolveResult:
    """Solve encoded bitmap bytes (PNG, JPEG, GIF...). Raises InputError if undecodable."""
    image = load_image_from_bytes(file_bytes)
    return solve_image(image, config=config, provider=provider, timeout=timeout)


def solve_payload(
    captcha: object,
    *,
    config: Optional[SolverConfig] = None,
    provider=None,
    timeout: Optional[float] = None,
) -> SolveResult:
    """Solve a base64 payload, optionally prefixed with a data-URI header."""
    return solve_bytes(decode_payload(captcha), config=config, provider=provider, timeout=timeout)
