"""Configuration loading utilities for the AEM Notes application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".aem_notes_write_check"

GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
ADMIN_TOKEN_ENV = "AEM_NOTES_ADMIN_TOKEN"

DEFAULT_GEMINI_MODEL = "gemini-1.5-flash-latest"
DEFAULT_AI_TIMEOUT_SECONDS = 120.0
DEFAULT_BACKUP_RETENTION = 5


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. The flag in the returned tuple tells
    whether a fallback was used. When nothing can be prepared ``preferred`` is
    returned unchanged so later stages can report the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and service settings for the application."""

    storage_root: Path
    content_file: Path
    uploads_root: Path
    gemini_model: str = DEFAULT_GEMINI_MODEL
    ai_timeout_seconds: float = DEFAULT_AI_TIMEOUT_SECONDS
    backup_retention: int = DEFAULT_BACKUP_RETENTION

    @property
    def content_root(self) -> Path:
        """Directory holding the content store and its backups."""

        return self.content_file.parent

    @property
    def gemini_api_key(self) -> Optional[str]:
        value = (os.environ.get(GEMINI_API_KEY_ENV) or "").strip()
        return value or None

    @property
    def admin_token(self) -> Optional[str]:
        value = (os.environ.get(ADMIN_TOKEN_ENV) or "").strip()
        return value or None

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".aem_notes" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        content_file = (base_path / mapping["content_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_content = content_file.relative_to(preferred_storage)
            except ValueError:
                relative_content = None
            if relative_content is not None:
                fallback_content = (storage_root / relative_content).resolve()
                if _ensure_writable_directory(fallback_content.parent):
                    LOGGER.warning(
                        "Preferred content location '%s' is not writable; using fallback '%s'.",
                        content_file,
                        fallback_content,
                    )
                    content_file = fallback_content

        if not _ensure_writable_directory(content_file.parent):
            fallback_content = (storage_root / "content" / content_file.name).resolve()
            if fallback_content != content_file and _ensure_writable_directory(
                fallback_content.parent
            ):
                LOGGER.warning(
                    "Preferred content location '%s' is not writable; using fallback '%s'.",
                    content_file,
                    fallback_content,
                )
                content_file = fallback_content
            else:
                LOGGER.warning(
                    "Content location '%s' is not writable and no fallback is available.",
                    content_file,
                )

        preferred_uploads = (base_path / mapping["uploads_root"]).resolve()
        uploads_root, _ = _select_writable_directory(
            preferred_uploads,
            label="uploads",
            fallbacks=(storage_root / "uploads",),
        )

        return cls(
            storage_root=storage_root,
            content_file=content_file,
            uploads_root=uploads_root,
            gemini_model=str(mapping.get("gemini_model") or DEFAULT_GEMINI_MODEL),
            ai_timeout_seconds=float(
                mapping.get("ai_timeout_seconds", DEFAULT_AI_TIMEOUT_SECONDS)
            ),
            backup_retention=int(mapping.get("backup_retention", DEFAULT_BACKUP_RETENTION)),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["ADMIN_TOKEN_ENV", "AppConfig", "GEMINI_API_KEY_ENV", "load_config"]
