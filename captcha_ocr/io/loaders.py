"""Payload loaders (base64 / bitmap bytes -> RGB image array)."""

from __future__ import annotations

import base64
import binascii
import io
import re

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import InputError

DATA_URI_RE = re.compile(r"^data:image/[\w.+-]+;base64,", re.I)


def _decode_urlsafe(data: str) -> bytes:
    try:
        return base64.b64decode(data, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputError("captcha is not valid base64") from exc


def decode_payload(captcha: object) -> bytes:
    """Turn the request's `captcha` field into raw bitmap bytes."""
    if not isinstance(captcha, str) or not captcha.strip():
        raise InputError("Missing captcha field")
    data = DATA_URI_RE.sub("", captcha.strip())
    # Tolerate whitespace and missing padding from copy/pasted payloads.
    data = "".join(data.split())
    data += "=" * (-len(data) % 4)
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raw = _decode_urlsafe(data)
    if not raw:
        raise InputError("captcha decodes to an empty payload")
    return raw


def load_image_from_bytes(file_bytes: bytes) -> np.ndarray:
    """Decode bitmap bytes to an RGB uint8 array.

    Transparent pixels are composited onto white so that the background of
    PNG captchas does not turn black.
    """
    if not file_bytes:
        raise InputError("Empty image payload")
    try:
        im = Image.open(io.BytesIO(file_bytes))
        im.load()
    except (UnidentifiedImageError, OSError, EOFError, SyntaxError, ValueError) as exc:
        raise InputError("captcha is not a decodable image") from exc
    if im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info):
        im = im.convert("RGBA")
        background = Image.new("RGBA", im.size, (255, 255, 255, 255))
        im = Image.alpha_composite(background, im)
    if im.mode != "RGB":
        im = im.convert("RGB")
    return np.array(im)
