"""Read-only metadata extraction from finished lecture fragments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

__all__ = ["DEFAULT_TITLE", "LectureMetadata", "extract_lecture_metadata"]


DEFAULT_UNIT = "unit1"
DEFAULT_TITLE = "Untitled Lecture"

_ID = re.compile(r'id="(lecture_\d{8}_\d{6})"')
_UNIT = re.compile(r'data-unit="([^"]+)"')
_TITLE = re.compile(r"<h1[^>]*>([^<]+)</h1>")
_SECTION = re.compile(r"<h2[^>]*>")


@dataclass(frozen=True)
class LectureMetadata:
    id: Optional[str]
    unit: str
    title: str
    section_count: int
    has_examples: bool
    has_solutions: bool
    has_definitions: bool
    has_theorems: bool
    has_math_display: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "unit": self.unit,
            "title": self.title,
            "sectionCount": self.section_count,
            "hasExamples": self.has_examples,
            "hasSolutions": self.has_solutions,
            "hasDefinitions": self.has_definitions,
            "hasTheorems": self.has_theorems,
            "hasMathDisplay": self.has_math_display,
        }


def _has_class(html: str, name: str) -> bool:
    return f'class="{name}"' in html


def extract_lecture_metadata(html: str) -> LectureMetadata:
    """Summarise *html*; missing fields fall back to their defaults."""

    id_match = _ID.search(html)
    unit_match = _UNIT.search(html)
    title_match = _TITLE.search(html)
    title = title_match.group(1).strip() if title_match else ""

    return LectureMetadata(
        id=id_match.group(1) if id_match else None,
        unit=unit_match.group(1) if unit_match else DEFAULT_UNIT,
        title=title or DEFAULT_TITLE,
        section_count=len(_SECTION.findall(html)),
        has_examples=_has_class(html, "example"),
        has_solutions=_has_class(html, "solution"),
        has_definitions=_has_class(html, "definition"),
        has_theorems=_has_class(html, "theorem"),
        has_math_display=_has_class(html, "math-display"),
    )
