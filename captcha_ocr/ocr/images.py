"""Image transforms applied before recognition.

All helpers take a uint8 numpy array and return a new array; inputs are
never modified in place. Greyscale arrays are 2-D, colour arrays are RGB.
"""

from __future__ import annotations

import cv2
import numpy as np

from ..errors import PreprocessingFailure
from ..pipeline.schemas import PreprocessingProfile

WHITE = 255


def to_grey(arr: np.ndarray) -> np.ndarray:
    if arr.ndim == 2:
        return arr.copy()
    return cv2.cvtColor(arr, cv2.COLOR_RGB2GRAY)


def autocrop(arr: np.ndarray) -> np.ndarray:
    """Remove the uniform border whose colour matches the top-left pixel."""
    if arr.size == 0:
        return arr.copy()
    reference = arr[0, 0]
    differs = arr != reference
    if differs.ndim == 3:
        differs = differs.any(axis=2)
    rows = np.flatnonzero(differs.any(axis=1))
    cols = np.flatnonzero(differs.any(axis=0))
    if rows.size == 0 or cols.size == 0:
        return arr.copy()
    return arr[rows[0] : rows[-1] + 1, cols[0] : cols[-1] + 1].copy()


def resize_to_height(arr: np.ndarray, height: int) -> np.ndarray:
    """Scale to `height` pixels, preserving aspect ratio."""
    h, w = arr.shape[:2]
    if h == height:
        return arr.copy()
    width = max(1, int(round(w * height / float(h))))
    interpolation = cv2.INTER_CUBIC if height > h else cv2.INTER_AREA
    return cv2.resize(arr, (width, height), interpolation=interpolation)


def scale(arr: np.ndarray, factor: float) -> np.ndarray:
    h, w = arr.shape[:2]
    size = (max(1, int(round(w * factor))), max(1, int(round(h * factor))))
    interpolation = cv2.INTER_CUBIC if factor > 1 else cv2.INTER_AREA
    return cv2.resize(arr, size, interpolation=interpolation)


def blur(arr: np.ndarray, radius: float) -> np.ndarray:
    return cv2.GaussianBlur(arr, (0, 0), sigmaX=float(radius))


def invert(arr: np.ndarray) -> np.ndarray:
    return cv2.bitwise_not(arr)


def contrast(arr: np.ndarray, level: float) -> np.ndarray:
    """Adjust contrast around mid-grey; `level` ranges over -1..1."""
    if level == 0:
        return arr.copy()
    if level >= 1:
        # Infinite gain: everything collapses to black or white.
        return np.where(arr > 127, WHITE, 0).astype(np.uint8)
    factor = (level + 1.0) / (1.0 - level)
    adjusted = np.floor(factor * (arr.astype(np.float32) - 127.0) + 127.0)
    return np.clip(adjusted, 0, WHITE).astype(np.uint8)


def threshold_max(arr: np.ndarray, cutoff: int) -> np.ndarray:
    """Force pixels at or above `cutoff` to white; darker pixels keep their value."""
    return np.where(arr >= cutoff, WHITE, arr).astype(np.uint8)


def pad(arr: np.ndarray, border: int) -> np.ndarray:
    if border <= 0:
        return arr.copy()
    return cv2.copyMakeBorder(arr, border, border, border, border, cv2.BORDER_CONSTANT, value=WHITE)


def apply_profile(arr: np.ndarray, profile: PreprocessingProfile) -> np.ndarray:
    """Run the profile's transform chain and return a new greyscale image.

    Raises PreprocessingFailure if any step fails.
    """
    if not profile.preprocess:
        return arr
    try:
        out = autocrop(arr) if profile.autocrop else arr
        if profile.resize_height:
            out = resize_to_height(out, profile.resize_height)
        elif profile.scale != 1:
            out = scale(out, profile.scale)
        out = to_grey(out)
        if profile.blur > 0:
            out = blur(out, profile.blur)
        if profile.invert:
            out = invert(out)
        out = contrast(out, profile.contrast)
        if profile.threshold_max is not None:
            out = threshold_max(out, profile.threshold_max)
    except (cv2.error, ValueError, IndexError, ZeroDivisionError) as exc:
        raise PreprocessingFailure(f"preprocessing failed: {exc}") from exc
    return out
