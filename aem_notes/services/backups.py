"""Bounded snapshot history for the content store."""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import List, Optional

from .events import emit_file_event
from .naming import epoch_millis


LOGGER = logging.getLogger(__name__)

DEFAULT_RETENTION = 5


def backup_prefix(store_path: Path) -> str:
    return f"{store_path.stem}_backup_"


class BackupManager:
    """Copies the store aside before every write and prunes old copies.

    Backups live next to the store as ``<stem>_backup_<epoch-millis><suffix>``.
    Names sort in creation order, so pruning keeps the newest *retention*
    files by name.
    """

    def __init__(self, retention: int = DEFAULT_RETENTION) -> None:
        if retention < 1:
            raise ValueError("Backup retention must be at least 1")
        self._retention = retention

    @property
    def retention(self) -> int:
        return self._retention

    def list_backups(self, store_path: Path) -> List[Path]:
        """Return the backups of *store_path*, newest first."""

        directory = store_path.parent
        if not directory.is_dir():
            return []
        prefix = backup_prefix(store_path)
        suffix = store_path.suffix
        candidates = [
            entry
            for entry in directory.iterdir()
            if entry.is_file() and entry.name.startswith(prefix) and entry.name.endswith(suffix)
        ]
        return sorted(candidates, key=lambda entry: entry.name, reverse=True)

    def snapshot(self, store_path: Path) -> Optional[Path]:
        """Copy *store_path* aside and prune; ``None`` when there is no store yet.

        Filesystem errors propagate so no write follows a failed backup.
        """

        if not store_path.exists():
            LOGGER.debug("No content store at %s yet; skipping backup", store_path)
            return None

        start = time.perf_counter()
        backup_path = store_path.with_name(
            f"{backup_prefix(store_path)}{self._next_stamp(store_path)}{store_path.suffix}"
        )
        shutil.copy2(store_path, backup_path)
        removed = self._prune(store_path)
        emit_file_event(
            "backup_created",
            payload={
                "store": store_path,
                "backup": backup_path.name,
                "pruned": [entry.name for entry in removed],
            },
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return backup_path

    def _next_stamp(self, store_path: Path) -> int:
        stamp = epoch_millis()
        existing = self.list_backups(store_path)
        if existing:
            latest = existing[0].stem[len(backup_prefix(store_path)) :]
            if latest.isdigit():
                # Two snapshots within one millisecond still get ordered names.
                stamp = max(stamp, int(latest) + 1)
        return stamp

    def _prune(self, store_path: Path) -> List[Path]:
        stale = self.list_backups(store_path)[self._retention :]
        for entry in stale:
            entry.unlink()
            LOGGER.debug("Removed old backup %s", entry)
        return stale


__all__ = ["BackupManager", "DEFAULT_RETENTION", "backup_prefix"]
