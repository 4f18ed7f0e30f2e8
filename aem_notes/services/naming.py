"""Identifier and file naming helpers."""

from __future__ import annotations

from datetime import datetime, timedelta
import re
import time
from pathlib import PurePath
from typing import Collection, Optional

__all__ = [
    "LECTURE_ID_PATTERN",
    "LECTURE_ID_PREFIX",
    "build_upload_name",
    "epoch_millis",
    "generate_lecture_id",
    "slugify",
]


LECTURE_ID_PREFIX = "lecture_"
LECTURE_ID_PATTERN = re.compile(r"^lecture_\d{8}_\d{6}$")


def slugify(value: str) -> str:
    """Return a filesystem-friendly representation of *value*."""

    value = value.strip().lower()
    value = re.sub(r"[^a-z0-9]+", "-", value)
    value = re.sub(r"-+", "-", value).strip("-")
    return value or "item"


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def generate_lecture_id(
    now: Optional[datetime] = None,
    *,
    existing: Collection[str] = (),
) -> str:
    """Return ``lecture_YYYYMMDD_HHMMSS`` for *now* (local time by default).

    When the candidate is already in *existing* the timestamp is advanced one
    second at a time, so two uploads within the same second still get
    distinct identifiers of the same shape.
    """

    moment = (now or datetime.now()).replace(microsecond=0)
    candidate = f"{LECTURE_ID_PREFIX}{moment:%Y%m%d_%H%M%S}"
    while candidate in existing:
        moment += timedelta(seconds=1)
        candidate = f"{LECTURE_ID_PREFIX}{moment:%Y%m%d_%H%M%S}"
    return candidate


def build_upload_name(original_name: str, *, millis: Optional[int] = None) -> str:
    """Return ``<epoch-millis>-<name>`` for a stored upload.

    Only the final path component of *original_name* is kept and its stem is
    slugified, so client-supplied names cannot escape the uploads directory.
    """

    name = PurePath(original_name.replace("\\", "/")).name
    path = PurePath(name)
    stem = slugify(path.stem) if path.stem else "upload"
    suffix = path.suffix.lower() or ".pdf"
    stamp = epoch_millis() if millis is None else millis
    return f"{stamp}-{stem}{suffix}"
