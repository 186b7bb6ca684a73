import base64
import io
from contextlib import contextmanager

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

import captcha_ocr.api.main as api_main
from captcha_ocr.ocr.tesseract import PerCallEngineProvider, SharedEngineProvider
from captcha_ocr.pipeline.config import parse_config
from captcha_ocr.pipeline.schemas import RecognitionResult
from captcha_ocr.pipeline.solve import StrategyRunner


class FixedEngine:
    def __init__(self, text="ATLK", conf=90):
        self.text = text
        self.conf = conf

    def configure(self, *, whitelist, psm, deadline=None):
        pass

    def recognize(self, image):
        return RecognitionResult(full_text=self.text, full_confidence=self.conf)

    def release(self):
        pass


def _png_b64(size=(60, 20)) -> str:
    buf = io.BytesIO()
    Image.fromarray(np.full((size[1], size[0], 3), 255, dtype=np.uint8)).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


@pytest.fixture
def client():
    config = parse_config({"strategies": [{"name": "raw", "profile": {"preprocess": False}}]})
    runner = StrategyRunner(config, PerCallEngineProvider(FixedEngine))
    return TestClient(api_main.create_app(runner=runner))


@pytest.mark.parametrize("path", ["/", "/solve"])
def test_solve_endpoints(client, path):
    resp = client.post(path, json={"captcha": "data:image/png;base64," + _png_b64()})
    assert resp.status_code == 200
    assert resp.json() == {"solution": "ATLK"}


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"captcha": None},
        {"captcha": ""},
        {"captcha": 123},
        {"captcha": "%%%%"},
        {"captcha": base64.b64encode(b"not an image").decode("ascii")},
        {"captcha": _png_b64()[:30]},
        ["captcha"],
    ],
)
def test_bad_payloads_answer_empty_solution(client, body):
    resp = client.post("/solve", json=body)
    assert resp.status_code == 200
    assert resp.json() == {"solution": ""}


def test_non_json_body_answers_empty_solution(client):
    resp = client.post("/", content=b"captcha=abc", headers={"content-type": "text/plain"})
    assert resp.status_code == 200
    assert resp.json() == {"solution": ""}


def test_unexpected_failure_answers_empty_solution(client, monkeypatch):
    def boom(_runner, _captcha):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(api_main, "_solve_captcha", boom)
    resp = client.post("/", json={"captcha": _png_b64()})
    assert resp.status_code == 200
    assert resp.json() == {"solution": ""}


def test_trace_is_returned_when_enabled(client, monkeypatch):
    monkeypatch.setenv("CAPTCHA_RETURN_TRACE", "1")
    data = client.post("/", json={"captcha": _png_b64()}).json()
    assert data["solution"] == "ATLK"
    assert data["outcome"] == "accepted"
    assert data["attempts"][0]["strategy"] == "raw"


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["version"]


class SessionOnlyProvider:
    """Provider without a `close` method."""

    @contextmanager
    def session(self):
        yield FixedEngine()


def test_shutdown_tolerates_provider_without_close():
    config = parse_config({"strategies": [{"name": "raw", "profile": {"preprocess": False}}]})
    app = api_main.create_app(runner=StrategyRunner(config, SessionOnlyProvider()))

    with TestClient(app) as client:
        response = client.post("/solve", json={"captcha": _png_b64()})
    assert response.json() == {"solution": "ATLK"}


def test_build_runner_reads_environment(monkeypatch):
    monkeypatch.setenv("CAPTCHA_SHARED_ENGINE", "true")
    monkeypatch.setenv("CAPTCHA_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("CAPTCHA_OCR_LANG", "eng+deu")
    runner = api_main.build_runner()

    assert isinstance(runner.provider, SharedEngineProvider)
    assert runner.config.timeout_seconds == 5
    assert runner.config.lang == "eng+deu"


def test_build_runner_ignores_bad_timeout(monkeypatch):
    monkeypatch.setenv("CAPTCHA_TIMEOUT_SECONDS", "soon")
    runner = api_main.build_runner()
    assert runner.config.timeout_seconds == 20
    assert isinstance(runner.provider, PerCallEngineProvider)


def test_run_server_rejects_bad_port():
    with pytest.raises(ValueError):
        api_main.run_server(port=0)
