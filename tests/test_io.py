import base64
import io
import json
from pathlib import Path

import pytest
from PIL import Image

from captcha_ocr.errors import InputError
from captcha_ocr.io.loaders import decode_payload, load_image_from_bytes
from captcha_ocr.io.writers import eval_row, write_json, write_jsonl
from captcha_ocr.pipeline.schemas import ACCEPTED, Attempt, Candidate, SolveResult


def _png_bytes(size=(10, 10), color=(255, 255, 255), mode="RGB") -> bytes:
    image = Image.new(mode, size, color)
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def test_decode_payload_with_data_uri_header():
    raw = _png_bytes()
    payload = "data:image/png;base64," + base64.b64encode(raw).decode("ascii")
    assert decode_payload(payload) == raw


def test_decode_payload_tolerates_missing_padding_and_whitespace():
    encoded = base64.b64encode(b"abcd1").decode("ascii").rstrip("=")
    assert decode_payload(encoded[:4] + "\n" + encoded[4:]) == b"abcd1"


@pytest.mark.parametrize("payload", [None, "", "   ", 42, "!!!not base64!!!", "data:image/png;base64,"])
def test_decode_payload_rejects_bad_input(payload):
    with pytest.raises(InputError):
        decode_payload(payload)


def test_load_image_from_bytes_rgb():
    arr = load_image_from_bytes(_png_bytes(size=(12, 8)))
    assert arr.shape == (8, 12, 3)


def test_transparent_background_becomes_white():
    arr = load_image_from_bytes(_png_bytes(color=(0, 0, 0, 0), mode="RGBA"))
    assert arr.min() == 255


@pytest.mark.parametrize("data", [b"", b"hello world", _png_bytes()[:20]])
def test_load_image_rejects_non_images(data):
    with pytest.raises(InputError):
        load_image_from_bytes(data)


def test_decode_payload_accepts_urlsafe_alphabet():
    raw = b"\xfb\xff\xbf"
    encoded = base64.urlsafe_b64encode(raw).decode("ascii")
    assert encoded == "-_-_"
    assert decode_payload(encoded) == raw


def test_write_json_creates_parent_directories(tmp_path: Path):
    path = tmp_path / "nested" / "dir" / "out.json"
    write_json(path, {"solution": "ATLK"})
    assert json.loads(path.read_text()) == {"solution": "ATLK"}


def test_write_jsonl_one_row_per_line(tmp_path: Path):
    path = tmp_path / "report" / "rows.jsonl"
    rows = [{"file": "ATLK.png", "correct": True}, {"file": "WXYZ.png", "correct": False}]
    assert write_jsonl(path, rows) == 2
    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert lines == rows


def test_eval_row_from_result_and_error():
    attempt = Attempt(strategy="raw_line", mode="whole_image", candidate=Candidate("ATLK", 80.0))
    result = SolveResult(solution="ATLK", outcome=ACCEPTED, strategy="raw_line", attempts=[attempt])

    row = eval_row("ATLK.png", "ATLK", result)
    assert row["correct"] is True
    assert row["attempts"] == 1
    assert row["strategy"] == "raw_line"

    failed = eval_row("junk.png", "JUNK", error="captcha is not a decodable image")
    assert failed == {
        "file": "junk.png",
        "expected": "JUNK",
        "error": "captcha is not a decodable image",
        "correct": False,
    }
