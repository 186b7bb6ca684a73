"""FastAPI service answering captcha solve requests."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool

from .. import __version__
from ..errors import InputError
from ..io.loaders import decode_payload, load_image_from_bytes
from ..ocr.tesseract import engine_provider
from ..pipeline.config import load_config
from ..pipeline.schemas import SolveResult
from ..pipeline.solve import StrategyRunner

LOGGER = logging.getLogger("captcha_ocr.api")

EMPTY_SOLUTION = {"solution": ""}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def build_runner() -> StrategyRunner:
    """Create the runner from the strategy table and CAPTCHA_* environment overrides."""
    config = load_config()
    lang = _get_env("CAPTCHA_OCR_LANG")
    if lang:
        config.lang = lang
    timeout = _get_env("CAPTCHA_TIMEOUT_SECONDS")
    if timeout:
        try:
            config.timeout_seconds = float(timeout) or None
        except ValueError:
            LOGGER.warning("Ignoring invalid CAPTCHA_TIMEOUT_SECONDS=%r", timeout)
    provider = engine_provider(
        shared=_env_bool("CAPTCHA_SHARED_ENGINE", default=False),
        lang=config.lang,
        oem=config.oem,
        tesseract_cmd=_get_env("TESSERACT_CMD"),
    )
    LOGGER.info(
        "Loaded strategy table v%s with %s strategies", config.version, len(config.strategies)
    )
    return StrategyRunner(config, provider)


def _solve_captcha(runner: StrategyRunner, captcha: object) -> SolveResult:
    image = load_image_from_bytes(decode_payload(captcha))
    return runner.run(image)


def create_app(runner: Optional[StrategyRunner] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _get_runner(app)
        yield
        if app.state.runner is not None:
            close = getattr(app.state.runner.provider, "close", None)
            if close is not None:
                close()

    app = FastAPI(title="captcha_ocr API", lifespan=lifespan)
    app.state.runner = runner

    def _get_runner(app: FastAPI) -> StrategyRunner:
        if app.state.runner is None:
            app.state.runner = build_runner()
        return app.state.runner

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "version": __version__}

    @app.post("/")
    @app.post("/solve")
    async def solve(request: Request) -> dict:
        try:
            body = await request.json()
        except ValueError:
            LOGGER.warning("Request body is not valid JSON")
            return dict(EMPTY_SOLUTION)
        captcha = body.get("captcha") if isinstance(body, dict) else None

        try:
            result = await run_in_threadpool(_solve_captcha, _get_runner(app), captcha)
        except InputError as exc:
            LOGGER.warning("Rejected captcha payload: %s", exc)
            return dict(EMPTY_SOLUTION)
        except Exception:
            LOGGER.exception("Unexpected failure while solving captcha")
            return dict(EMPTY_SOLUTION)

        return result.to_dict(trace=_env_bool("CAPTCHA_RETURN_TRACE", default=False))

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 3000) -> None:
    """Run the API server."""
    if not 1 <= port <= 65535:
        raise ValueError(f"Invalid port: {port} (must be 1-65535)")
    uvicorn.run("captcha_ocr.api.main:app", host=host, port=port)


if __name__ == "__main__":
    run_server()
