"""Whitespace normalisation for generated lecture HTML."""

from __future__ import annotations

import re
from typing import List, Optional, Protocol

__all__ = ["HtmlFormatter", "IndentingHtmlFormatter", "post_process_html"]


_BLOCK_CONTAINERS = (
    "math-display",
    "example",
    "solution",
    "definition",
    "theorem",
    "method",
    "formula",
)
# Only breaks when the tag follows other text on the same line.
_INLINE_CONTAINER_OPEN = re.compile(
    r'(?<=\S)[ \t]*(?=<div class="(?:%s)[" ])' % "|".join(_BLOCK_CONTAINERS)
)
_EXCESS_BLANK_LINES = re.compile(r"\n\s*\n\s*\n")
_VOID_TAG = re.compile(r"^<(?:area|br|col|embed|hr|img|input|link|meta|source|wbr)\b", re.IGNORECASE)


class HtmlFormatter(Protocol):
    """Anything able to lay out a lecture fragment for the content store."""

    def format(self, html: str) -> str:
        """Return *html* reformatted without changing how it renders."""


class IndentingHtmlFormatter:
    """Line-based formatter using a tag depth counter instead of a parser."""

    def __init__(self, indent: str = "  ") -> None:
        self._indent = indent

    def format(self, html: str) -> str:
        processed = _INLINE_CONTAINER_OPEN.sub("\n", html)
        processed = _EXCESS_BLANK_LINES.sub("\n\n", processed)
        return "\n".join(self._reindent(processed.split("\n")))

    def _reindent(self, lines: List[str]) -> List[str]:
        depth = 0
        output: List[str] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                output.append("")
                continue
            if stripped.startswith("</"):
                depth = max(0, depth - 1)
            output.append(self._indent * depth + stripped)
            if self._opens_block(stripped):
                depth += 1
        return output

    @staticmethod
    def _opens_block(line: str) -> bool:
        if not line.startswith("<") or line.startswith("</") or line.startswith("<!"):
            return False
        if line.endswith("/>") or "</" in line:
            return False
        return not _VOID_TAG.match(line)


_DEFAULT_FORMATTER = IndentingHtmlFormatter()


def post_process_html(html: str, formatter: Optional[HtmlFormatter] = None) -> str:
    """Return *html* laid out by *formatter* (the indenting formatter by default)."""

    return (formatter or _DEFAULT_FORMATTER).format(html)
