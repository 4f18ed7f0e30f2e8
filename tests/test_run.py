"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

from types import SimpleNamespace

from typer.testing import CliRunner

import run
from aem_notes.services.ingestion import IngestionError


def _setup_serve(monkeypatch, tmp_path, upload_limit, *, open_browser=False):
    captured = {}

    monkeypatch.setattr(
        run,
        "initialize_app",
        lambda: SimpleNamespace(storage_root=tmp_path),
    )
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(
        run,
        "ContentStore",
        SimpleNamespace(from_config=lambda config: object()),
    )

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(store, config, root_path):
        captured["root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    class DummyThread:
        def __init__(self, target, daemon):
            self._target = target
            captured["thread_daemon"] = daemon

        def start(self):
            captured["thread_started"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    monkeypatch.setattr(run.threading, "Thread", DummyThread)
    monkeypatch.setattr(run, "get_max_upload_bytes", lambda: upload_limit)

    run.serve(host="0.0.0.0", port=9000, root_path="notes/", open_browser=open_browser)

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_passes_root_path_to_uvicorn(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=50 * 1024 * 1024)

    assert captured["config_kwargs"] == {
        "host": "0.0.0.0",
        "port": 9000,
        "log_config": None,
        "root_path": "/notes",
    }
    assert captured["root_path"] == "/notes"
    assert captured["app_state_server"] is captured["server_instance"]
    assert captured["server_run"] is True
    assert "thread_started" not in captured


def test_serve_opens_browser_on_request(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=0, open_browser=True)

    assert captured["thread_started"] is True
    assert captured["thread_daemon"] is True


def test_ingest_command_reports_stage_failure(monkeypatch, tmp_path):
    pdf = tmp_path / "lecture.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    config = SimpleNamespace(
        storage_root=tmp_path,
        gemini_api_key="key",
        gemini_model="model",
        ai_timeout_seconds=10.0,
    )
    monkeypatch.setattr(run, "initialize_app", lambda: config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "ContentStore", SimpleNamespace(from_config=lambda cfg: object()))
    monkeypatch.setattr(run, "GeminiContentGenerator", lambda *args, **kwargs: object())

    class FailingIngestor:
        def __init__(self, *args, **kwargs):
            pass

        def ingest(self, upload):
            assert upload.unit == "unit3"
            raise IngestionError("Failed to transcribe PDF content: boom", stage="stage1")

    monkeypatch.setattr(run, "LectureIngestor", FailingIngestor)

    result = CliRunner().invoke(run.cli, ["ingest", str(pdf), "--unit", "unit3"])

    assert result.exit_code == 1
    assert "Ingestion failed during stage1" in result.output


def test_backups_command_lists_entries(monkeypatch, tmp_path):
    backup = tmp_path / "lectures_backup_1700000000000.html"
    backup.write_text("<div></div>", encoding="utf-8")
    monkeypatch.setattr(run, "initialize_app", lambda: SimpleNamespace(storage_root=tmp_path))
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(
        run,
        "ContentStore",
        SimpleNamespace(
            from_config=lambda cfg: SimpleNamespace(list_backups=lambda: [backup])
        ),
    )

    result = CliRunner().invoke(run.cli, ["backups"])

    assert result.exit_code == 0
    assert "lectures_backup_1700000000000.html" in result.output
