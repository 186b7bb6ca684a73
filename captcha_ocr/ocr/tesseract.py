"""Tesseract OCR engine adapter.

One `recognize` call runs Tesseract once with hOCR output and
`hocr_char_boxes` enabled, which yields word confidences and per-character
boxes/confidences in a single pass.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from contextlib import contextmanager
from statistics import mean
from typing import Callable, Iterator, List, Optional

import numpy as np
import pytesseract
from bs4 import BeautifulSoup

from ..errors import RecognitionFailure
from ..pipeline.schemas import BoundingBox, RecognitionResult, SymbolCandidate, WordCandidate

LOGGER = logging.getLogger("captcha_ocr.ocr")

UPPERCASE_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Tesseract page segmentation modes.
PSM_SINGLE_LINE = 7
PSM_SINGLE_CHAR = 10

_CHAR_BBOX_RE = re.compile(r"x_bboxes (\d+) (\d+) (\d+) (\d+)")
_WCONF_RE = re.compile(r"x_wconf (-?[\d.]+)")
_CCONF_RE = re.compile(r"x_conf (-?[\d.]+)")


def _box(title: str, pattern: re.Pattern) -> BoundingBox:
    m = pattern.search(title)
    if not m:
        return BoundingBox(0, 0, 0, 0)
    left, top, right, bottom = (int(v) for v in m.groups())
    return BoundingBox(left, top, right, bottom)


def _conf(title: str, pattern: re.Pattern) -> float:
    m = pattern.search(title)
    if not m:
        return 0.0
    return max(0.0, float(m.group(1)))


def parse_hocr(hocr: bytes | str) -> RecognitionResult:
    """Parse Tesseract hOCR (with char boxes) into a RecognitionResult."""
    soup = BeautifulSoup(hocr, "html.parser")

    words: List[WordCandidate] = []
    symbols: List[SymbolCandidate] = []
    for word in soup.find_all("span", class_="ocrx_word"):
        # Char spans are separated by indentation whitespace.
        text = word.get_text("", strip=True)
        if not text:
            continue
        words.append(WordCandidate(text=text, confidence=_conf(word.get("title", ""), _WCONF_RE)))
        for cinfo in word.find_all("span", class_="ocrx_cinfo"):
            char = cinfo.get_text("", strip=True)
            if not char:
                continue
            ctitle = cinfo.get("title", "")
            symbols.append(
                SymbolCandidate(
                    char=char,
                    confidence=_conf(ctitle, _CCONF_RE),
                    bbox=_box(ctitle, _CHAR_BBOX_RE),
                )
            )

    full_text = " ".join(w.text for w in words)
    full_confidence = mean(w.confidence for w in words) if words else 0.0
    return RecognitionResult(
        full_text=full_text,
        full_confidence=full_confidence,
        words=words,
        symbols=symbols,
    )


class TesseractEngine:
    """A configurable Tesseract handle.

    pytesseract spawns one process per call; the handle keeps the whitelist
    and page mode between calls and refuses work after `release()`.
    """

    def __init__(self, *, lang: str = "eng", oem: int = 3, tesseract_cmd: Optional[str] = None) -> None:
        self.lang = lang
        self.oem = oem
        self.whitelist = UPPERCASE_WHITELIST
        self.psm = PSM_SINGLE_LINE
        self.deadline: Optional[float] = None
        self.released = False
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def configure(
        self,
        *,
        whitelist: str = UPPERCASE_WHITELIST,
        psm: int = PSM_SINGLE_LINE,
        deadline: Optional[float] = None,
    ) -> None:
        """Set the whitelist, page mode and an optional `time.monotonic()` deadline."""
        self._check_open()
        self.whitelist = whitelist
        self.psm = psm
        self.deadline = deadline

    def config_string(self) -> str:
        return (
            f"--oem {self.oem} --psm {self.psm} "
            f"-c tessedit_char_whitelist={self.whitelist} -c hocr_char_boxes=1"
        )

    def remaining(self) -> float:
        """Seconds left before the deadline; 0 means no limit for pytesseract."""
        if self.deadline is None:
            return 0
        left = self.deadline - time.monotonic()
        if left <= 0:
            raise RecognitionFailure("deadline reached before recognition")
        return left

    def recognize(self, image: np.ndarray) -> RecognitionResult:
        self._check_open()
        timeout = self.remaining()
        try:
            # pytesseract kills the process and raises RuntimeError on timeout.
            hocr = pytesseract.image_to_pdf_or_hocr(
                image, lang=self.lang, config=self.config_string(), extension="hocr", timeout=timeout
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError, RuntimeError) as exc:
            raise RecognitionFailure(f"tesseract failed: {exc}") from exc
        return parse_hocr(hocr)

    def release(self) -> None:
        self.released = True

    def _check_open(self) -> None:
        if self.released:
            raise RecognitionFailure("engine used after release")


EngineFactory = Callable[[], TesseractEngine]


class PerCallEngineProvider:
    """Creates a fresh engine per session and releases it on exit."""

    def __init__(self, factory: EngineFactory) -> None:
        self.factory = factory

    @contextmanager
    def session(self) -> Iterator[TesseractEngine]:
        engine = self.factory()
        try:
            yield engine
        finally:
            engine.release()

    def close(self) -> None:
        pass


class SharedEngineProvider:
    """One long-lived engine, serialized by a lock and rebuilt after any failure."""

    def __init__(self, factory: EngineFactory) -> None:
        self.factory = factory
        self._lock = threading.Lock()
        self._engine: Optional[TesseractEngine] = None

    @contextmanager
    def session(self) -> Iterator[TesseractEngine]:
        with self._lock:
            if self._engine is None:
                self._engine = self.factory()
            try:
                yield self._engine
            except Exception:
                LOGGER.warning("Resetting shared recognition engine after failure")
                self._reset()
                raise

    def close(self) -> None:
        with self._lock:
            self._reset()

    def _reset(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.release()


def engine_provider(*, shared: bool = False, lang: str = "eng", oem: int = 3, tesseract_cmd: Optional[str] = None):
    """Build the default provider for Tesseract engines."""
    def factory() -> TesseractEngine:
        return TesseractEngine(lang=lang, oem=oem, tesseract_cmd=tesseract_cmd)

    if shared:
        return SharedEngineProvider(factory)
    return PerCallEngineProvider(factory)
