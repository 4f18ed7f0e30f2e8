"""Two-pass generation pipeline turning an uploaded PDF into a stored lecture."""

from __future__ import annotations

import contextlib
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Callable, Dict, List, NoReturn, Optional

from ..config import AppConfig
from ..processing.documents import PDF_MIME_TYPE, DocumentError, get_pdf_page_count
from ..processing.formatting import HtmlFormatter, post_process_html
from ..processing.generation import ContentGenerator, PromptPart
from ..processing.metadata import LectureMetadata, extract_lecture_metadata
from ..processing.prompts import build_enhancement_prompt, build_transcription_prompt
from ..processing.sanitizer import clean_response
from ..processing.validation import ValidationReport, validate_lecture_html
from .events import emit_file_event, emit_stage_event
from .naming import build_upload_name, generate_lecture_id
from .storage import DEFAULT_UNIT_ID, UNIT_IDS, ContentStore


LOGGER = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    RECEIVED = "received"
    STAGE1_REQUESTED = "stage1_requested"
    STAGE1_SANITIZED = "stage1_sanitized"
    STAGE2_REQUESTED = "stage2_requested"
    STAGE2_SANITIZED = "stage2_sanitized"
    POST_PROCESSED = "post_processed"
    VALIDATED = "validated"
    BACKED_UP = "backed_up"
    PERSISTED = "persisted"
    RESPONDED = "responded"
    ERRORED = "errored"


class InvalidUploadError(ValueError):
    """Raised for uploads rejected before the pipeline starts."""


class IngestionError(RuntimeError):
    """Raised when a pipeline run fails; ``stage`` names the failing step."""

    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


@dataclass
class LectureUpload:
    """Input of one pipeline run."""

    data: bytes
    filename: str
    mime_type: str = PDF_MIME_TYPE
    prompt: Optional[str] = None
    unit: Optional[str] = None
    title: Optional[str] = None

    def resolved_unit(self) -> str:
        unit = (self.unit or "").strip()
        return unit or DEFAULT_UNIT_ID

    def resolved_title(self) -> str:
        title = (self.title or "").strip()
        if title:
            return title
        path = PurePath(self.filename.replace("\\", "/"))
        name = path.stem if path.suffix.lower() == ".pdf" else path.name
        return name.strip() or "Untitled Lecture"


@dataclass
class IngestionResult:
    lecture_id: str
    unit: str
    title: str
    page_count: int
    raw_html: str
    final_html: str
    stage1_validation: ValidationReport
    final_validation: ValidationReport
    metadata: LectureMetadata
    backup_path: Optional[Path]
    upload_path: Path
    stages: List[PipelineStage] = field(default_factory=list)

    @property
    def backup_created(self) -> bool:
        return self.backup_path is not None

    def to_payload(self, pdf_url: str) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Lecture processed with advanced educational formatting!",
            "data": {
                "pdfUrl": pdf_url,
                "lectureId": self.lecture_id,
                "pageCount": self.page_count,
                "metadata": self.metadata.to_dict(),
                "processing": {
                    "stage1Validation": self.stage1_validation.to_dict(),
                    "finalValidation": self.final_validation.to_dict(),
                    "backupCreated": self.backup_created,
                },
            },
            "content": {
                "rawTranscription": self.raw_html,
                "enhancedHtml": self.final_html,
            },
        }


class _PipelineRun:
    """Tracks the linear state progression of one ingestion."""

    def __init__(self, lecture_id: str) -> None:
        self.lecture_id = lecture_id
        self.history: List[PipelineStage] = []
        self._started = time.perf_counter()

    def advance(self, stage: PipelineStage, **payload: Any) -> None:
        self.history.append(stage)
        emit_stage_event(
            stage.value,
            f"Lecture {self.lecture_id} -> {stage.value}",
            payload={"lecture_id": self.lecture_id, **payload},
            duration_ms=(time.perf_counter() - self._started) * 1000.0,
            level=logging.DEBUG,
        )

    def fail(self, label: str, message: str, error: BaseException) -> NoReturn:
        self.history.append(PipelineStage.ERRORED)
        emit_stage_event(
            PipelineStage.ERRORED.value,
            f"Lecture {self.lecture_id} failed during {label}",
            payload={
                "lecture_id": self.lecture_id,
                "failed_stage": label,
                "error": f"{error.__class__.__name__}: {error}",
            },
            duration_ms=(time.perf_counter() - self._started) * 1000.0,
            level=logging.ERROR,
        )
        raise IngestionError(f"{message}: {error}", stage=label) from error


class LectureIngestor:
    """Runs uploads through transcription, enhancement, checks and persistence."""

    def __init__(
        self,
        config: AppConfig,
        store: ContentStore,
        generator: ContentGenerator,
        *,
        formatter: Optional[HtmlFormatter] = None,
        document_inspector: Optional[Callable[[bytes], int]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._generator = generator
        self._formatter = formatter
        self._inspect_document = document_inspector or get_pdf_page_count
        self._clock = clock or datetime.now

    def check_upload(self, upload: LectureUpload) -> int:
        """Reject unusable uploads; returns the PDF page count."""

        if not upload.data:
            raise InvalidUploadError("No file uploaded.")
        unit = upload.resolved_unit()
        if unit not in UNIT_IDS:
            raise InvalidUploadError(
                f"Unknown unit '{unit}'. Expected one of: {', '.join(sorted(UNIT_IDS))}."
            )
        try:
            return self._inspect_document(upload.data)
        except DocumentError as error:
            raise InvalidUploadError(f"Uploaded file is not a readable PDF: {error}") from error

    def ingest(self, upload: LectureUpload) -> IngestionResult:
        """Run the whole pipeline for *upload*; raises :class:`IngestionError` on failure."""

        page_count = self.check_upload(upload)
        unit = upload.resolved_unit()
        title = upload.resolved_title()

        with self._store.lock:
            try:
                existing_ids = self._store.lecture_ids()
            except (OSError, ValueError) as error:
                _PipelineRun(PurePath(upload.filename).name).fail(
                    "read", "Failed to read lecture content", error
                )
            lecture_id = generate_lecture_id(self._clock(), existing=existing_ids)
            run = _PipelineRun(lecture_id)
            run.advance(
                PipelineStage.RECEIVED,
                filename=upload.filename,
                unit=unit,
                page_count=page_count,
                custom_prompt=bool(upload.prompt and upload.prompt.strip()),
            )

            transcription_prompt = build_transcription_prompt(
                lecture_id=lecture_id,
                unit=unit,
                title=title,
                custom_prompt=upload.prompt,
            )
            LOGGER.info("Stage 1: transcribing %s as %s", upload.filename, lecture_id)
            run.advance(PipelineStage.STAGE1_REQUESTED)
            try:
                raw_stage1 = self._generator.generate(
                    [
                        PromptPart.from_text(transcription_prompt),
                        PromptPart.from_bytes(upload.data, upload.mime_type or PDF_MIME_TYPE),
                    ]
                )
            except Exception as error:  # noqa: BLE001 - any backend failure ends the run
                run.fail("stage1", "Failed to transcribe PDF content", error)

            raw_html = clean_response(raw_stage1)
            run.advance(PipelineStage.STAGE1_SANITIZED, characters=len(raw_html))
            stage1_validation = validate_lecture_html(raw_html)
            if not stage1_validation.is_valid:
                LOGGER.warning(
                    "Stage 1 validation issues for %s: %s",
                    lecture_id,
                    "; ".join(stage1_validation.issues),
                )

            enhancement_prompt = build_enhancement_prompt(
                lecture_id=lecture_id,
                unit=unit,
                content=raw_html,
            )
            LOGGER.info("Stage 2: enhancing educational structure for %s", lecture_id)
            run.advance(PipelineStage.STAGE2_REQUESTED)
            try:
                raw_stage2 = self._generator.generate([PromptPart.from_text(enhancement_prompt)])
            except Exception as error:  # noqa: BLE001 - any backend failure ends the run
                run.fail("stage2", "Failed to enhance educational structure", error)

            enhanced_html = clean_response(raw_stage2)
            run.advance(PipelineStage.STAGE2_SANITIZED, characters=len(enhanced_html))

            final_html = post_process_html(enhanced_html, self._formatter)
            run.advance(PipelineStage.POST_PROCESSED)

            final_validation = validate_lecture_html(final_html)
            if not final_validation.is_valid:
                LOGGER.warning(
                    "Final validation issues for %s: %s",
                    lecture_id,
                    "; ".join(final_validation.issues),
                )
            metadata = extract_lecture_metadata(final_html)
            run.advance(PipelineStage.VALIDATED, **metadata.to_dict())

            try:
                backup_path = self._store.snapshot()
            except (OSError, ValueError) as error:
                run.fail("backup", "Failed to back up lecture content", error)
            if backup_path is not None:
                LOGGER.info("Backup created: %s", backup_path)
            run.advance(PipelineStage.BACKED_UP, backup=backup_path)

            # The PDF is staged before the append and renamed into place after it.
            staged_path: Optional[Path] = None
            try:
                staged_path, upload_path = self._stage_upload(upload)
                self._store.append(final_html)
                self._publish_upload(staged_path, upload_path, len(upload.data))
            except (OSError, ValueError) as error:
                if staged_path is not None:
                    with contextlib.suppress(OSError):
                        staged_path.unlink()
                run.fail("persist", "Failed to save lecture content", error)
            run.advance(PipelineStage.PERSISTED, upload=upload_path.name)

        run.advance(PipelineStage.RESPONDED)
        return IngestionResult(
            lecture_id=lecture_id,
            unit=unit,
            title=title,
            page_count=page_count,
            raw_html=raw_html,
            final_html=final_html,
            stage1_validation=stage1_validation,
            final_validation=final_validation,
            metadata=metadata,
            backup_path=backup_path,
            upload_path=upload_path,
            stages=list(run.history),
        )

    def _stage_upload(self, upload: LectureUpload) -> tuple[Path, Path]:
        """Write the PDF under a hidden temp name; returns ``(staged, target)``."""

        uploads_root = self._config.uploads_root
        uploads_root.mkdir(parents=True, exist_ok=True)
        target = uploads_root / build_upload_name(upload.filename)
        staged = uploads_root / f".{target.name}.tmp"
        staged.write_bytes(upload.data)
        return staged, target

    def _publish_upload(self, staged: Path, target: Path, size: int) -> None:
        start = time.perf_counter()
        os.replace(staged, target)
        emit_file_event(
            "upload_saved",
            payload={"path": target, "bytes": size},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )


__all__ = [
    "IngestionError",
    "IngestionResult",
    "InvalidUploadError",
    "LectureIngestor",
    "LectureUpload",
    "PipelineStage",
]
