"""Cleanup of raw model completions into a bare HTML payload."""

from __future__ import annotations

import re

__all__ = ["CONTAINER_OPEN_MARKER", "CONTAINER_CLOSE_MARKER", "clean_response"]


CONTAINER_OPEN_MARKER = '<div id="lecture_'
CONTAINER_CLOSE_MARKER = "</div>"

_LANGUAGE_FENCE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n?")
_BARE_FENCE = re.compile(r"```\n?")
_EXCESS_BLANK_LINES = re.compile(r"\n\s*\n\s*\n")
_REPEATED_SPACES = re.compile(r" {2,}")


def clean_response(raw: str, *, strict: bool = True) -> str:
    """Return the HTML payload contained in a model completion.

    Code fences (language tagged or bare) and stray backticks are removed and
    the result is trimmed. With *strict* the text is further narrowed to the
    span between the first lecture container opening and the last closing
    ``</div>``, dropping any preamble or epilogue the model added. Each bound
    is only applied when it is found. Applying the function to its own output
    returns it unchanged.
    """

    if not raw:
        return ""

    cleaned = _LANGUAGE_FENCE.sub("", raw)
    cleaned = _BARE_FENCE.sub("", cleaned)
    cleaned = cleaned.replace("`", "")
    # Collapse before locating markers so a second pass finds the same span.
    cleaned = _EXCESS_BLANK_LINES.sub("\n\n", cleaned)
    cleaned = _REPEATED_SPACES.sub(" ", cleaned)
    cleaned = cleaned.strip()

    if strict:
        start = cleaned.find(CONTAINER_OPEN_MARKER)
        if start != -1:
            cleaned = cleaned[start:]
        end = cleaned.rfind(CONTAINER_CLOSE_MARKER)
        if end != -1:
            cleaned = cleaned[: end + len(CONTAINER_CLOSE_MARKER)]

    return cleaned.strip()
