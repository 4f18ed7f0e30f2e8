"""FastAPI application serving published lectures and the admin upload surface."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import html
import logging
import os
import secrets
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, TypeVar

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi import status
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..processing.documents import PDF_MIME_TYPE
from ..processing.generation import GeminiContentGenerator, GenerationError
from ..services.events import emit_structured_event
from ..services.ingestion import (
    IngestionError,
    IngestionResult,
    InvalidUploadError,
    LectureIngestor,
    LectureUpload,
)
from ..services.storage import ContentStore, LectureCatalog

T = TypeVar("T")

_TEMPLATE_PATH = Path(__file__).parent / "templates" / "index.html"
_WELCOME_ID = "welcome"
_WELCOME_HTML = (
    "<h2>Welcome to AEM Notes</h2><p>No lectures have been published yet.</p>"
    "<p>An admin can upload a PDF to generate the content.</p>"
)
_NOT_FOUND_HTML = "<h2>Lecture Not Found</h2><p>The requested lecture could not be found.</p>"

_DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024
try:
    _MAX_UPLOAD_BYTES = int(
        (os.environ.get("AEM_NOTES_MAX_UPLOAD_BYTES") or "").strip() or _DEFAULT_MAX_UPLOAD_BYTES
    )
except ValueError:
    _MAX_UPLOAD_BYTES = _DEFAULT_MAX_UPLOAD_BYTES


def get_max_upload_bytes() -> int:
    """Return the configured maximum upload size in bytes (0 disables the limit)."""

    return int(_MAX_UPLOAD_BYTES)


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "aem_notes_request_id",
    default=None,
)
_JOB_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "aem_notes_job_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    job_id = _JOB_ID_VAR.get()
    if job_id:
        context["job_id"] = str(job_id)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        request_token = _REQUEST_ID_VAR.set(request_id)
        job_token = _JOB_ID_VAR.set(None)
        try:
            await self.app(scope, receive, send)
        finally:
            _JOB_ID_VAR.reset(job_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra or {})
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("aem_notes.events"), {})


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(
        "APP_EVENT",
        message,
        payload=context,
        correlation=_collect_correlation_context(),
        logger=EVENT_LOGGER,
    )


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _failure_payload(message: str, stage: str) -> Dict[str, Any]:
    return {
        "success": False,
        "error": "Failed to process lecture content",
        "details": {
            "message": message,
            "stage": stage,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


def _render_navigation(catalog: LectureCatalog, current_id: Optional[str], base: str) -> str:
    sections: List[str] = []
    for unit in catalog.units:
        items = []
        for lecture in unit.lectures:
            css = "lecture-link active" if lecture.id == current_id else "lecture-link"
            items.append(
                f'<li><a class="{css}" '
                f'href="{base}/lectures/{html.escape(lecture.id, quote=True)}">'
                f"{html.escape(lecture.title)}</a></li>"
            )
        body = "".join(items) or '<li class="empty">No lectures yet</li>'
        sections.append(
            f'<div class="unit" data-unit="{unit.id}">'
            f'<button type="button" class="unit-btn">{html.escape(unit.title)} &#9662;</button>'
            f'<ul class="lecture-list">{body}</ul></div>'
        )
    return "\n".join(sections)


class ContentPayload(BaseModel):
    content: str


def create_app(
    store: ContentStore,
    *,
    config: AppConfig,
    ingestor: Optional[LectureIngestor] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application.

    When *ingestor* is omitted a Gemini-backed one is created on the first
    upload, so the public pages work without an API key.
    """

    normalized_root = _normalize_root_path(root_path)
    background_executor = ThreadPoolExecutor(
        max_workers=1,
        thread_name_prefix="lecture-ingestion",
    )

    @contextlib.asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            background_executor.shutdown(wait=True, cancel_futures=True)

    app = FastAPI(
        title="AEM Notes",
        description="Lecture notes generated from uploaded PDFs",
        root_path=normalized_root,
        lifespan=_lifespan,
    )
    app.add_middleware(RequestContextMiddleware)
    app.state.server = None
    app.state.store = store
    app.state.background_executor = background_executor
    app.state.background_jobs = set()
    app.state.background_jobs_lock = threading.Lock()

    index_template = _TEMPLATE_PATH.read_text(encoding="utf-8")
    ingestor_lock = threading.Lock()
    ingestor_holder: Dict[str, LectureIngestor] = {}
    if ingestor is not None:
        ingestor_holder["current"] = ingestor

    def _get_ingestor() -> LectureIngestor:
        with ingestor_lock:
            current = ingestor_holder.get("current")
            if current is None:
                generator = GeminiContentGenerator(
                    config.gemini_api_key,
                    model=config.gemini_model,
                    timeout_seconds=config.ai_timeout_seconds,
                )
                current = LectureIngestor(config, store, generator)
                ingestor_holder["current"] = current
            return current

    def _require_admin(request: Request) -> None:
        expected = config.admin_token
        if expected is None:
            return
        supplied = request.headers.get("x-admin-token")
        if supplied is None:
            authorization = request.headers.get("authorization") or ""
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer":
                supplied = credentials.strip()
        if not supplied or not secrets.compare_digest(supplied, expected):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Admin token required",
            )

    admin_only = [Depends(_require_admin)]

    async def _run_serialized_background_task(
        operation: Callable[[], T],
        *,
        context_label: str,
    ) -> T:
        """Run ``operation`` in the shared single worker, queueing if necessary."""

        jobs: Set[Future] = app.state.background_jobs
        jobs_lock: threading.Lock = app.state.background_jobs_lock

        job_token = _JOB_ID_VAR.set(_new_correlation_id())
        loop = asyncio.get_running_loop()
        parent_context = contextvars.copy_context()
        future = loop.run_in_executor(
            background_executor, lambda: parent_context.run(operation)
        )

        with jobs_lock:
            active_jobs = {job for job in jobs if not job.done()}
            jobs.clear()
            jobs.update(active_jobs)
            queued = bool(active_jobs)
            active_count = len(active_jobs)
            jobs.add(future)

        if queued:
            LOGGER.info("Queued %s behind %s active job(s)", context_label, active_count)

        try:
            return await future
        finally:
            with jobs_lock:
                jobs.discard(future)
            _JOB_ID_VAR.reset(job_token)

    def _render_page(request: Request, current_id: Optional[str], body: str) -> str:
        base = request.scope.get("root_path") or normalized_root
        base = _normalize_root_path(base if isinstance(base, str) else None)
        catalog = store.catalog()
        return (
            index_template.replace("__AEM_NOTES_ROOT_PATH__", base)
            .replace("__AEM_NOTES_NAVIGATION__", _render_navigation(catalog, current_id, base))
            .replace("__AEM_NOTES_CURRENT_LECTURE__", html.escape(current_id or "", quote=True))
            .replace("__AEM_NOTES_LECTURE_HTML__", body)
        )

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        return HTMLResponse(_render_page(request, _WELCOME_ID, _WELCOME_HTML))

    @app.get("/index")
    async def first_lecture(request: Request) -> RedirectResponse:
        lectures = store.catalog().lectures
        target = lectures[0].id if lectures else _WELCOME_ID
        return RedirectResponse(url=f"{normalized_root}/lectures/{target}")

    @app.get("/lectures/{lecture_id}", response_class=HTMLResponse)
    async def view_lecture(request: Request, lecture_id: str) -> HTMLResponse:
        if lecture_id == _WELCOME_ID:
            return HTMLResponse(_render_page(request, _WELCOME_ID, _WELCOME_HTML))
        if not store.exists():
            return HTMLResponse(_render_page(request, _WELCOME_ID, _WELCOME_HTML))
        fragment = store.get_lecture_html(lecture_id)
        if fragment is None:
            _log_event("Lecture not found", lecture_id=lecture_id)
            return HTMLResponse(
                _render_page(request, None, _NOT_FOUND_HTML),
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return HTMLResponse(_render_page(request, lecture_id, fragment))

    @app.get("/api/lectures", dependencies=admin_only)
    async def list_lectures() -> Dict[str, Any]:
        catalog = store.catalog()
        _log_event("Listed lectures", lecture_count=len(catalog.lectures))
        return catalog.to_dict()

    @app.get("/api/lectures/{lecture_id}")
    async def get_lecture(lecture_id: str) -> Dict[str, Any]:
        fragment = store.get_lecture_html(lecture_id)
        if fragment is None:
            raise HTTPException(status_code=404, detail="Lecture not found")
        return {"id": lecture_id, "html": fragment}

    @app.get("/api/admin/content", dependencies=admin_only)
    async def read_content() -> Dict[str, Any]:
        return {"content": store.read()}

    @app.put("/api/admin/content", dependencies=admin_only)
    async def save_content(payload: ContentPayload) -> Dict[str, Any]:
        _log_event("Saving edited lecture content", characters=len(payload.content))
        try:
            backup_path = await _run_serialized_background_task(
                lambda: store.replace(payload.content),
                context_label="content_overwrite",
            )
        except OSError as error:
            LOGGER.exception("Error saving lectures")
            raise HTTPException(status_code=500, detail="Failed to save content.") from error
        return {
            "success": True,
            "message": "Lectures saved successfully!",
            "backupCreated": backup_path is not None,
        }

    @app.get("/api/admin/backups", dependencies=admin_only)
    async def list_backups() -> Dict[str, Any]:
        backups = store.list_backups()
        return {
            "retention": store.backups.retention,
            "backups": [
                {"name": entry.name, "size": entry.stat().st_size} for entry in backups
            ],
        }

    @app.post("/upload", dependencies=admin_only)
    async def upload_lecture(
        pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
        prompt: Optional[str] = Form(None),
        unit: Optional[str] = Form(None),
        lecture_title: Optional[str] = Form(None, alias="lectureTitle"),
    ) -> JSONResponse:
        if pdf_file is None or not pdf_file.filename:
            raise HTTPException(status_code=400, detail="No file uploaded.")

        try:
            data = await pdf_file.read()
        finally:
            await pdf_file.close()

        limit = get_max_upload_bytes()
        if limit > 0 and len(data) > limit:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"Upload exceeds the {limit} byte limit.",
            )

        upload = LectureUpload(
            data=data,
            filename=pdf_file.filename,
            mime_type=pdf_file.content_type or PDF_MIME_TYPE,
            prompt=prompt,
            unit=unit,
            title=lecture_title,
        )
        _log_event("Received lecture upload", filename=upload.filename, bytes=len(data), unit=unit)

        try:
            lecture_ingestor = _get_ingestor()
        except GenerationError as error:
            LOGGER.error("Generation backend unavailable: %s", error)
            raise HTTPException(status_code=503, detail=str(error)) from error

        try:
            result: IngestionResult = await _run_serialized_background_task(
                lambda: lecture_ingestor.ingest(upload),
                context_label="lecture_ingestion",
            )
        except InvalidUploadError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        except IngestionError as error:
            LOGGER.error("Upload processing failed at %s: %s", error.stage, error)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=_failure_payload(str(error), error.stage),
            )
        except Exception as error:  # noqa: BLE001 - reported to the client as a failure
            LOGGER.exception("Upload processing error")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=_failure_payload(str(error), "unknown"),
            )

        _log_event("Lecture published", lecture_id=result.lecture_id, unit=result.unit)
        pdf_url = f"{normalized_root}/uploads/{result.upload_path.name}"
        return JSONResponse(content=result.to_payload(pdf_url))

    @app.get("/uploads/{name}")
    async def serve_upload(name: str) -> FileResponse:
        uploads_root = config.uploads_root.resolve()
        target = (uploads_root / name).resolve()
        if target.parent != uploads_root or not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target, media_type=PDF_MIME_TYPE)

    return app


__all__ = ["create_app", "get_max_upload_bytes"]
