"""Advisory structural checks for generated lecture HTML."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

__all__ = ["ValidationReport", "validate_lecture_html"]


_CONTAINER_MARKER = 'class="lecture-content"'
_LECTURE_ID = re.compile(r'id="lecture_\d{8}_\d{6}"')
_MAIN_HEADING = re.compile(r"<h1[\s>]", re.IGNORECASE)

MISSING_CONTAINER = "Missing lecture-content container"
INVALID_ID = "Missing or invalid lecture ID format"
MISSING_TITLE = "Missing main title (h1)"
MISSING_MATH = "No mathematical content detected - might be missing LaTeX formatting"


@dataclass
class ValidationReport:
    """Outcome of :func:`validate_lecture_html`; never blocks the caller."""

    issues: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "issues": list(self.issues)}


def _has_math(html: str) -> bool:
    inline = "\\(" in html and "\\)" in html
    block = "\\[" in html and "\\]" in html
    return inline or block


def validate_lecture_html(html: str) -> ValidationReport:
    """Return the list of structural problems found in *html*."""

    report = ValidationReport()
    if _CONTAINER_MARKER not in html:
        report.issues.append(MISSING_CONTAINER)
    if not _LECTURE_ID.search(html):
        report.issues.append(INVALID_ID)
    if not _MAIN_HEADING.search(html):
        report.issues.append(MISSING_TITLE)
    if not _has_math(html):
        report.issues.append(MISSING_MATH)
    return report
