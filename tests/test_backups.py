from pathlib import Path

import pytest

from aem_notes.services import backups as backups_module
from aem_notes.services.backups import BackupManager


def _store(tmp_path: Path) -> Path:
    store_path = tmp_path / "lectures.html"
    store_path.write_text("<div>v0</div>", encoding="utf-8")
    return store_path


def test_snapshot_without_store_returns_none(tmp_path: Path) -> None:
    manager = BackupManager()

    assert manager.snapshot(tmp_path / "lectures.html") is None
    assert manager.list_backups(tmp_path / "lectures.html") == []


def test_snapshot_copies_current_content(tmp_path: Path) -> None:
    store_path = _store(tmp_path)

    backup_path = BackupManager().snapshot(store_path)

    assert backup_path is not None
    assert backup_path.name.startswith("lectures_backup_")
    assert backup_path.suffix == ".html"
    assert backup_path.read_text(encoding="utf-8") == "<div>v0</div>"


def test_retention_keeps_newest_backups(tmp_path: Path, monkeypatch) -> None:
    store_path = _store(tmp_path)
    stamps = iter(range(1_700_000_000_000, 1_700_000_000_007))
    monkeypatch.setattr(backups_module, "epoch_millis", lambda: next(stamps))
    manager = BackupManager(retention=5)

    created = []
    for index in range(7):
        store_path.write_text(f"<div>v{index}</div>", encoding="utf-8")
        created.append(manager.snapshot(store_path))

    remaining = manager.list_backups(store_path)
    assert [entry.name for entry in remaining] == [
        entry.name for entry in reversed(created[2:])
    ]
    assert not created[0].exists()
    assert not created[1].exists()
    assert remaining[0].read_text(encoding="utf-8") == "<div>v6</div>"


def test_snapshots_within_one_millisecond_get_distinct_names(
    tmp_path: Path, monkeypatch
) -> None:
    store_path = _store(tmp_path)
    monkeypatch.setattr(backups_module, "epoch_millis", lambda: 1_700_000_000_000)
    manager = BackupManager()

    first = manager.snapshot(store_path)
    second = manager.snapshot(store_path)

    assert first != second
    assert manager.list_backups(store_path) == [second, first]


def test_retention_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BackupManager(retention=0)
