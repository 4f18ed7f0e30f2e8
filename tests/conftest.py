from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from aem_notes.bootstrap import Bootstrapper
from aem_notes.config import ADMIN_TOKEN_ENV, GEMINI_API_KEY_ENV, AppConfig


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(GEMINI_API_KEY_ENV, raising=False)
    monkeypatch.delenv(ADMIN_TOKEN_ENV, raising=False)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "content_file": "storage/content/lectures.html",
            "uploads_root": "storage/uploads",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


def make_lecture_html(
    lecture_id: str = "lecture_20240315_143000",
    *,
    unit: str = "unit2",
    title: str = "Euler Method",
    heading: str = "Overview",
) -> str:
    return (
        f'<div id="{lecture_id}" class="lecture-content" data-unit="{unit}">\n'
        f"<h1>{title}</h1>\n"
        f"<h2>{heading}</h2>\n"
        '<div class="definition">Step \\(h\\)</div>\n'
        "</div>"
    )
