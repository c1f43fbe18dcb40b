"""FastAPI application serving the GOAT MUSIC kiosk."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.background import BackgroundTask

from core.settings import Settings
from core.settings import settings as default_settings
from logging_utils import init_logging
from metrics import (
    download_total,
    generation_requests_total,
    labels,
    render_metrics,
    survey_submissions_total,
    task_status_total,
)
from music.client import MusicApiClient, MusicApiConfig
from music.downloader import AudioProxy, DownloadError, sanitize_filename
from music.errors import MusicAPIError, UpstreamHTTPError
from music.schemas import SONG_FAILURE_STATUSES, SONG_PROGRESS_STATUSES, SONG_SUCCESS, GenerateSongRequest
from music.service import GenerationService
from survey.delivery import download_url, slugify
from survey.store import SurveyForm, SurveyStore, build_survey_store
from survey.validators import validate_form

log = logging.getLogger("goat-web")

_WEB_LABELS = labels("web")

_KNOWN_TASK_STATUSES = frozenset(SONG_PROGRESS_STATUSES | SONG_FAILURE_STATUSES | {SONG_SUCCESS})


def task_status_label(status: Optional[str]) -> str:
    if not status:
        return "unknown"
    return status if status in _KNOWN_TASK_STATUSES else "other"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _pydantic_message(exc: PydanticValidationError) -> str:
    parts = []
    for entry in exc.errors():
        loc = ".".join(str(part) for part in entry.get("loc", ()))
        msg = entry.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Solicitud inválida"


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    download_transport: Optional[httpx.AsyncBaseTransport] = None,
    survey_store: Optional[SurveyStore] = None,
) -> FastAPI:
    cfg = settings or default_settings
    init_logging("goat-web", cfg)

    app = FastAPI(title="GOAT MUSIC", docs_url=None, redoc_url=None)
    client = MusicApiClient(MusicApiConfig.from_settings(cfg), transport=transport)
    service = GenerationService.from_settings(client, cfg)
    proxy = AudioProxy(transport=download_transport)
    store = survey_store or build_survey_store(cfg)

    app.state.settings = cfg
    app.state.service = service
    app.state.proxy = proxy
    app.state.survey_store = store

    @app.on_event("startup")
    async def _startup_event() -> None:
        tail = cfg.token_tail(cfg.MUSIC_API_KEY)
        log.info(
            "ENV music: base=%s, model=%s, token_tail=%s",
            cfg.MUSIC_API_BASE,
            cfg.MUSIC_DEFAULT_MODEL,
            f"****{tail}" if tail else "none",
        )
        if not cfg.MUSIC_READY:
            log.warning("MUSIC_API_KEY is not configured; generation requests will fail")

    @app.on_event("shutdown")
    async def _shutdown_event() -> None:
        await client.aclose()
        await proxy.aclose()

    @app.middleware("http")
    async def _middleware(request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.get("/healthz")
    def healthz() -> JSONResponse:
        payload = {"ok": True, "music_ready": cfg.MUSIC_READY, "base": cfg.MUSIC_API_BASE}
        return JSONResponse(payload)

    @app.get("/metrics", include_in_schema=False)
    def metrics_endpoint() -> Response:
        payload = render_metrics()
        return Response(content=payload, media_type="text/plain; version=0.0.4; charset=utf-8")

    @app.post("/api/generate-song")
    async def generate_song(request: Request) -> JSONResponse:
        mode = "unknown"
        try:
            client.require_credential()
        except MusicAPIError as exc:
            generation_requests_total.labels(result="config_error", mode=mode, **_WEB_LABELS).inc()
            log.error("generation rejected", extra={"meta": {"error": str(exc)}})
            return _error(str(exc), exc.http_status)

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            generation_requests_total.labels(result="invalid", mode=mode, **_WEB_LABELS).inc()
            return _error("JSON inválido", 400)
        if not isinstance(body, dict):
            generation_requests_total.labels(result="invalid", mode=mode, **_WEB_LABELS).inc()
            return _error("JSON inválido", 400)

        try:
            payload = GenerateSongRequest.model_validate(body)
        except PydanticValidationError as exc:
            generation_requests_total.labels(result="invalid", mode=mode, **_WEB_LABELS).inc()
            return _error(_pydantic_message(exc), 400)
        mode = payload.mode

        try:
            task_id = await service.generate_song(payload)
        except MusicAPIError as exc:
            result = "invalid" if exc.http_status == 400 else "error"
            generation_requests_total.labels(result=result, mode=mode, **_WEB_LABELS).inc()
            log.warning(
                "generation failed",
                extra={"meta": {"mode": mode, "error": str(exc), "type": exc.__class__.__name__}},
            )
            return _error(str(exc), exc.http_status)
        except httpx.HTTPError as exc:
            generation_requests_total.labels(result="network_error", mode=mode, **_WEB_LABELS).inc()
            log.error("generation transport error", extra={"meta": {"mode": mode, "error": str(exc)}})
            return _error(str(exc) or "Error de red", 500)

        generation_requests_total.labels(result="accepted", mode=mode, **_WEB_LABELS).inc()
        return JSONResponse({"taskId": task_id}, status_code=202)

    @app.get("/api/get-task")
    async def get_task(task_id: Optional[str] = Query(default=None, alias="taskId")) -> JSONResponse:
        if not task_id or not task_id.strip():
            return _error("taskId requerido", 400)
        task_id = task_id.strip()
        try:
            task, raw = await service.get_task(task_id)
        except UpstreamHTTPError as exc:
            task_status_total.labels(status="upstream_error").inc()
            return _error(str(exc), exc.response_status)
        except MusicAPIError as exc:
            task_status_total.labels(status="error").inc()
            return _error(str(exc), exc.http_status)
        except httpx.HTTPError as exc:
            task_status_total.labels(status="network_error").inc()
            log.error("task status transport error", extra={"meta": {"taskId": task_id, "error": str(exc)}})
            return _error(str(exc) or "Error de red", 500)

        task_status_total.labels(status=task_status_label(task.status)).inc()
        track = task.track.model_dump(by_alias=True) if task.track else None
        return JSONResponse({"status": task.status, "track": track, "raw": raw})

    @app.get("/api/download")
    async def download(src: Optional[str] = None, filename: Optional[str] = None) -> Response:
        if not src:
            download_total.labels(result="bad_request").inc()
            return PlainTextResponse("Missing 'src' query param", status_code=400)
        try:
            stream = await proxy.open(src)
        except DownloadError as exc:
            download_total.labels(result="upstream_error").inc()
            return PlainTextResponse(str(exc), status_code=502)

        download_total.labels(result="ok").inc()
        headers = {
            "Content-Disposition": f'attachment; filename="{sanitize_filename(filename)}"',
            "Cache-Control": "no-store",
            "Access-Control-Expose-Headers": "Content-Disposition",
        }
        return StreamingResponse(
            stream.chunks(),
            media_type=stream.content_type,
            headers=headers,
            background=BackgroundTask(stream.aclose),
        )

    @app.get("/api/download-link")
    async def download_link(request: Request, src: Optional[str] = None, title: Optional[str] = None) -> JSONResponse:
        if not src:
            return _error("Missing 'src' query param", 400)
        base = cfg.PUBLIC_BASE_URL or str(request.base_url)
        return JSONResponse({"url": download_url(base, src, title), "filename": f"{slugify(title)}.mp3"})

    @app.post("/api/survey")
    async def submit_survey(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if not isinstance(body, dict):
            survey_submissions_total.labels(result="invalid").inc()
            return _error("JSON inválido", 400)
        errors = validate_form(body)
        if errors:
            survey_submissions_total.labels(result="invalid").inc()
            return JSONResponse({"errors": errors}, status_code=400)
        record = await run_in_threadpool(store.create, SurveyForm.model_validate(body))
        survey_submissions_total.labels(result="stored").inc()
        log.info("survey stored", extra={"meta": {"id": record.id}})
        return JSONResponse({"id": record.id}, status_code=201)

    @app.get("/api/survey")
    async def list_surveys(limit: Optional[int] = Query(default=None, ge=1, le=1000)) -> JSONResponse:
        records = await run_in_threadpool(store.list_ordered_by_created_at, limit)
        items: list[dict[str, Any]] = [
            record.model_dump(mode="json", by_alias=True) for record in records
        ]
        return JSONResponse({"items": items})

    @app.get("/api/survey/count")
    async def survey_count() -> JSONResponse:
        count = await run_in_threadpool(store.count)
        return JSONResponse({"count": count})

    return app


app = create_app()


def main() -> None:  # pragma: no cover - manual entrypoint
    import uvicorn

    uvicorn.run("web:app", host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":  # pragma: no cover
    main()
