from __future__ import annotations

import re
import threading
import time
from datetime import datetime
from typing import List, Optional, Sequence

import pytest

from aem_notes.config import AppConfig
from aem_notes.processing.documents import DocumentError
from aem_notes.processing.generation import ContentGenerator, GenerationError, PromptPart
from aem_notes.services.ingestion import (
    IngestionError,
    InvalidUploadError,
    LectureIngestor,
    LectureUpload,
    PipelineStage,
)
from aem_notes.services.storage import LECTURE_SEPARATOR, ContentStore

from conftest import make_lecture_html


FIXED_NOW = datetime(2024, 3, 15, 14, 30, 0)
LECTURE_ID = "lecture_20240315_143000"


class ScriptedGenerator(ContentGenerator):
    """Returns queued completions and records every request."""

    def __init__(self, responses: Sequence[object]) -> None:
        self._responses = list(responses)
        self.calls: List[List[PromptPart]] = []

    def generate(self, parts: Sequence[PromptPart]) -> str:
        self.calls.append(list(parts))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return str(response)


def _stage1_html(lecture_id: str = LECTURE_ID) -> str:
    return (
        "```html\n"
        f'<div id="{lecture_id}" class="lecture-content" data-unit="unit2">'
        "<h1>Euler Method</h1><p>\\(y' = f(t, y)\\)</p></div>\n```"
    )


def _stage2_html(lecture_id: str = LECTURE_ID) -> str:
    return (
        "Sure! Here is the enhanced lecture:\n```html\n"
        f'<div id="{lecture_id}" class="lecture-content" data-unit="unit2">\n'
        "<h1>Euler Method</h1>\n<h2>Idea</h2>\n"
        '<p>Step forward.</p> <div class="example">\\(y_1 = y_0 + h f\\)</div>\n'
        "<h2>Error</h2>\n</div>\n```"
    )


def _ingestor(
    config: AppConfig,
    generator: ContentGenerator,
    *,
    store: Optional[ContentStore] = None,
    inspector=None,
) -> LectureIngestor:
    return LectureIngestor(
        config,
        store or ContentStore.from_config(config),
        generator,
        document_inspector=inspector or (lambda data: 3),
        clock=lambda: FIXED_NOW,
    )


def _upload(**overrides) -> LectureUpload:
    values = dict(
        data=b"%PDF-1.4 sample",
        filename="Euler Method.pdf",
        unit="unit2",
    )
    values.update(overrides)
    return LectureUpload(**values)


def test_ingest_appends_enhanced_lecture_after_backup(temp_config: AppConfig) -> None:
    store = ContentStore.from_config(temp_config)
    existing = make_lecture_html("lecture_20240101_090000")
    store.append(existing)
    generator = ScriptedGenerator([_stage1_html(), _stage2_html()])

    result = _ingestor(temp_config, generator, store=store).ingest(_upload())

    assert result.lecture_id == LECTURE_ID
    assert result.page_count == 3
    assert result.title == "Euler Method"
    assert result.raw_html.startswith(f'<div id="{LECTURE_ID}"')
    assert "```" not in result.final_html
    assert '\n  <div class="example">' in result.final_html
    assert result.final_validation.is_valid
    assert result.metadata.section_count == 2
    assert result.metadata.has_examples

    assert store.read() == existing + LECTURE_SEPARATOR + result.final_html
    backups = store.list_backups()
    assert backups == [result.backup_path]
    assert backups[0].read_text(encoding="utf-8") == existing

    assert result.upload_path.parent == temp_config.uploads_root
    assert result.upload_path.read_bytes() == b"%PDF-1.4 sample"
    assert result.upload_path.name.endswith("-euler-method.pdf")

    assert result.stages[0] is PipelineStage.RECEIVED
    assert result.stages[-1] is PipelineStage.RESPONDED
    assert PipelineStage.ERRORED not in result.stages


def test_first_ingest_creates_store_without_backup(temp_config: AppConfig) -> None:
    generator = ScriptedGenerator([_stage1_html(), _stage2_html()])

    result = _ingestor(temp_config, generator).ingest(_upload())

    assert not result.backup_created
    assert temp_config.content_file.read_text(encoding="utf-8") == result.final_html


def test_stage_prompts_carry_identifier_and_pdf(temp_config: AppConfig) -> None:
    generator = ScriptedGenerator([_stage1_html(), _stage2_html()])

    _ingestor(temp_config, generator).ingest(_upload(title="Custom Title"))

    stage1, stage2 = generator.calls
    assert LECTURE_ID in stage1[0].text
    assert "Custom Title" in stage1[0].text
    assert stage1[1].data == b"%PDF-1.4 sample"
    assert stage1[1].mime_type == "application/pdf"
    assert len(stage2) == 1
    assert LECTURE_ID in stage2[0].text
    assert "<h1>Euler Method</h1>" in stage2[0].text


def test_custom_prompt_is_sent_verbatim(temp_config: AppConfig) -> None:
    generator = ScriptedGenerator([_stage1_html(), _stage2_html()])

    _ingestor(temp_config, generator).ingest(_upload(prompt="Transcribe literally."))

    assert generator.calls[0][0].text == "Transcribe literally."


def test_stage1_failure_leaves_store_untouched(temp_config: AppConfig) -> None:
    store = ContentStore.from_config(temp_config)
    existing = make_lecture_html("lecture_20240101_090000")
    store.append(existing)
    cause = GenerationError("quota exceeded")
    generator = ScriptedGenerator([cause])

    with pytest.raises(IngestionError) as excinfo:
        _ingestor(temp_config, generator, store=store).ingest(_upload())

    assert excinfo.value.stage == "stage1"
    assert excinfo.value.__cause__ is cause
    assert "Failed to transcribe PDF content" in str(excinfo.value)
    assert store.read() == existing
    assert store.list_backups() == []
    assert list(temp_config.uploads_root.iterdir()) == []


def test_stage2_failure_is_reported(temp_config: AppConfig) -> None:
    generator = ScriptedGenerator([_stage1_html(), GenerationError("timeout")])

    with pytest.raises(IngestionError) as excinfo:
        _ingestor(temp_config, generator).ingest(_upload())

    assert excinfo.value.stage == "stage2"
    assert "Failed to enhance educational structure" in str(excinfo.value)
    assert not temp_config.content_file.exists()


def test_backup_failure_prevents_write(temp_config: AppConfig, monkeypatch) -> None:
    store = ContentStore.from_config(temp_config)
    store.append(make_lecture_html("lecture_20240101_090000"))
    before = store.read()

    def broken_snapshot(store_path):
        raise PermissionError("read-only")

    monkeypatch.setattr(store.backups, "snapshot", broken_snapshot)
    generator = ScriptedGenerator([_stage1_html(), _stage2_html()])

    with pytest.raises(IngestionError) as excinfo:
        _ingestor(temp_config, generator, store=store).ingest(_upload())

    assert excinfo.value.stage == "backup"
    assert store.read() == before


def test_invalid_output_is_still_persisted(temp_config: AppConfig) -> None:
    generator = ScriptedGenerator(["<p>no container</p>", "<p>still none</p>"])

    result = _ingestor(temp_config, generator).ingest(_upload())

    assert not result.stage1_validation.is_valid
    assert not result.final_validation.is_valid
    assert result.metadata.title == "Untitled Lecture"
    assert temp_config.content_file.read_text(encoding="utf-8") == "<p>still none</p>"


def test_identifier_avoids_existing_lecture(temp_config: AppConfig) -> None:
    store = ContentStore.from_config(temp_config)
    store.append(make_lecture_html(LECTURE_ID))
    next_id = "lecture_20240315_143001"
    generator = ScriptedGenerator([_stage1_html(next_id), _stage2_html(next_id)])

    result = _ingestor(temp_config, generator, store=store).ingest(_upload())

    assert result.lecture_id == next_id
    assert store.lecture_ids() == {LECTURE_ID, next_id}


def test_unknown_unit_is_rejected_before_generation(temp_config: AppConfig) -> None:
    generator = ScriptedGenerator([])

    with pytest.raises(InvalidUploadError):
        _ingestor(temp_config, generator).ingest(_upload(unit="unit9"))

    assert generator.calls == []


def test_unreadable_pdf_is_rejected(temp_config: AppConfig) -> None:
    def inspector(data: bytes) -> int:
        raise DocumentError("Unable to inspect PDF document")

    generator = ScriptedGenerator([])

    with pytest.raises(InvalidUploadError):
        _ingestor(temp_config, generator, inspector=inspector).ingest(_upload())

    assert generator.calls == []


def test_upload_defaults() -> None:
    upload = LectureUpload(data=b"x", filename="week3/Laplace.pdf")

    assert upload.resolved_unit() == "unit1"
    assert upload.resolved_title() == "Laplace"
    assert LectureUpload(data=b"x", filename="a.pdf", title="  ").resolved_title() == "a"


def test_upload_title_strips_only_pdf_suffix() -> None:
    assert LectureUpload(data=b"x", filename="notes.pdf.review.pdf").resolved_title() == (
        "notes.pdf.review"
    )
    assert LectureUpload(data=b"x", filename="SCAN.PDF").resolved_title() == "SCAN"
    assert LectureUpload(data=b"x", filename="C:\\docs\\Week 2.pdf").resolved_title() == "Week 2"
    assert LectureUpload(data=b"x", filename="handout.txt").resolved_title() == "handout.txt"


class SlowEchoGenerator(ContentGenerator):
    """Answers each request with a fragment for the id found in the prompt."""

    _ID = re.compile(r"lecture_\d{8}_\d{6}")

    def __init__(self, delay: float) -> None:
        self._delay = delay

    def generate(self, parts: Sequence[PromptPart]) -> str:
        time.sleep(self._delay)
        lecture_id = self._ID.search(parts[0].text).group(0)
        return (
            f'<div id="{lecture_id}" class="lecture-content" data-unit="unit2">'
            f"<h1>{lecture_id}</h1><p>\\(x\\)</p></div>"
        )


def test_overlapping_ingests_are_serialised(temp_config: AppConfig) -> None:
    store = ContentStore.from_config(temp_config)
    existing = make_lecture_html("lecture_20240101_090000")
    store.append(existing)
    results = []
    errors = []

    def worker() -> None:
        ingestor = _ingestor(temp_config, SlowEchoGenerator(0.05), store=store)
        try:
            results.append(ingestor.ingest(_upload()))
        except Exception as error:  # noqa: BLE001 - collected for the assertion below
            errors.append(error)

    threads = [threading.Thread(target=worker) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(results) == 3
    content = store.read()
    assert content.startswith(existing)
    assert content.count(LECTURE_SEPARATOR) == 3
    for result in results:
        assert result.final_html in content
        assert result.backup_path is not None
    assert len({result.lecture_id for result in results}) == 3
    assert store.lecture_ids() == {"lecture_20240101_090000"} | {
        result.lecture_id for result in results
    }
    assert len(store.list_backups()) == 3


def test_undecodable_store_fails_before_generation(temp_config: AppConfig) -> None:
    temp_config.content_file.write_bytes(b"<div>\xff\xfe broken</div>")
    generator = ScriptedGenerator([])

    with pytest.raises(IngestionError) as excinfo:
        _ingestor(temp_config, generator).ingest(_upload())

    assert excinfo.value.stage == "read"
    assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)
    assert generator.calls == []


def test_failed_append_leaves_no_uploaded_pdf(temp_config: AppConfig, monkeypatch) -> None:
    store = ContentStore.from_config(temp_config)
    store.append(make_lecture_html("lecture_20240101_090000"))
    before = store.read()

    def broken_append(fragment: str) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(store, "append", broken_append)
    generator = ScriptedGenerator([_stage1_html(), _stage2_html()])

    with pytest.raises(IngestionError) as excinfo:
        _ingestor(temp_config, generator, store=store).ingest(_upload())

    assert excinfo.value.stage == "persist"
    assert store.read() == before
    assert list(temp_config.uploads_root.iterdir()) == []
