"""The flat HTML document holding every published lecture."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from bs4 import BeautifulSoup

from ..config import AppConfig
from .backups import BackupManager
from .events import emit_file_event


LOGGER = logging.getLogger(__name__)


LECTURE_SEPARATOR = "\n\n<!-- =============== NEW LECTURE =============== -->\n\n"
LECTURE_CONTAINER_CLASS = "lecture-content"


@dataclass(frozen=True)
class Unit:
    id: str
    title: str


UNITS = (
    Unit("unit1", "Unit 1: Differential Equations"),
    Unit("unit2", "Unit 2: Numerical Solutions to ODEs"),
    Unit("unit3", "Unit 3: Complex Analysis"),
    Unit("unit4", "Unit 4: Fourier Series"),
    Unit("unit5", "Unit 5: Laplace, Fourier and Z Transforms"),
    Unit("unit6", "Unit 6: Graphs and Combinatorics"),
)
UNIT_IDS = frozenset(unit.id for unit in UNITS)
DEFAULT_UNIT_ID = "unit1"


@dataclass
class LectureSummary:
    id: str
    title: str
    unit: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "unit": self.unit}


@dataclass
class UnitSummary:
    id: str
    title: str
    lectures: List[LectureSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "lectures": [lecture.to_dict() for lecture in self.lectures],
        }


@dataclass
class LectureCatalog:
    lectures: List[LectureSummary]
    units: List[UnitSummary]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lectures": [lecture.to_dict() for lecture in self.lectures],
            "units": [unit.to_dict() for unit in self.units],
        }


class ContentStore:
    """Handle on the content document and its single-writer lock.

    Every mutation happens while holding :attr:`lock`; callers that need a
    read-modify-write spanning several calls take the lock themselves (it is
    re-entrant).
    """

    def __init__(self, path: Path, *, backups: Optional[BackupManager] = None) -> None:
        self._path = path
        self._backups = backups or BackupManager()
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: AppConfig) -> "ContentStore":
        return cls(config.content_file, backups=BackupManager(config.backup_retention))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backups(self) -> BackupManager:
        return self._backups

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def exists(self) -> bool:
        return self._path.exists()

    def read(self) -> str:
        """Return the whole document, or an empty string before the first write."""

        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def _parse(self) -> Optional[BeautifulSoup]:
        content = self.read()
        if not content.strip():
            return None
        return BeautifulSoup(content, "html.parser")

    def lecture_ids(self) -> Set[str]:
        soup = self._parse()
        if soup is None:
            return set()
        return {
            str(element.get("id"))
            for element in soup.select(f".{LECTURE_CONTAINER_CLASS}")
            if element.get("id")
        }

    def catalog(self) -> LectureCatalog:
        """Return every lecture plus the unit catalogue with lectures grouped by unit."""

        units = {unit.id: UnitSummary(id=unit.id, title=unit.title) for unit in UNITS}
        lectures: List[LectureSummary] = []
        soup = self._parse()
        if soup is not None:
            for element in soup.select(f".{LECTURE_CONTAINER_CLASS}"):
                lecture_id = str(element.get("id") or "")
                if not lecture_id:
                    continue
                heading = element.find("h2")
                title = heading.get_text(strip=True) if heading is not None else ""
                summary = LectureSummary(
                    id=lecture_id,
                    title=title or lecture_id,
                    unit=str(element.get("data-unit") or DEFAULT_UNIT_ID),
                )
                lectures.append(summary)
                if summary.unit in units:
                    units[summary.unit].lectures.append(summary)
        return LectureCatalog(lectures=lectures, units=list(units.values()))

    def get_lecture_html(self, lecture_id: str) -> Optional[str]:
        """Return the inner HTML of the lecture container with *lecture_id*."""

        soup = self._parse()
        if soup is None:
            return None
        element = soup.find(id=lecture_id)
        if element is None:
            return None
        return element.decode_contents()

    def snapshot(self) -> Optional[Path]:
        with self._lock:
            return self._backups.snapshot(self._path)

    def list_backups(self) -> List[Path]:
        return self._backups.list_backups(self._path)

    def append(self, fragment: str) -> None:
        """Append *fragment*, separated from existing content by a marker comment.

        No backup is taken here; the ingestion pipeline snapshots first so a
        failed backup can be reported on its own.
        """

        with self._lock:
            existing = self.read()
            separator = LECTURE_SEPARATOR if existing else ""
            self._write(existing + separator + fragment, operation="store_append")

    def replace(self, content: str) -> Optional[Path]:
        """Back up and overwrite the whole document; returns the backup path."""

        with self._lock:
            backup_path = self._backups.snapshot(self._path)
            self._write(content, operation="store_replace")
            return backup_path

    def _write(self, content: str, *, operation: str) -> None:
        start = time.perf_counter()
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=directory,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            delete=False,
        )
        temp_path = Path(handle.name)
        try:
            with handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self._path)
        except BaseException:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            raise
        emit_file_event(
            operation,
            payload={"path": self._path, "bytes": len(content.encode("utf-8"))},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )


__all__ = [
    "ContentStore",
    "DEFAULT_UNIT_ID",
    "LECTURE_SEPARATOR",
    "LectureCatalog",
    "LectureSummary",
    "UNITS",
    "UNIT_IDS",
    "Unit",
    "UnitSummary",
]
