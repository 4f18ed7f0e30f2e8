"""Entry-point for the AEM Notes application."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn
import typer

from aem_notes.bootstrap import initialize_app
from aem_notes.logging_utils import build_log_handlers, configure_logging
from aem_notes.processing.generation import GeminiContentGenerator, GenerationError
from aem_notes.services.ingestion import (
    IngestionError,
    InvalidUploadError,
    LectureIngestor,
    LectureUpload,
)
from aem_notes.services.storage import DEFAULT_UNIT_ID, ContentStore
from aem_notes.web import create_app
from aem_notes.web.server import get_max_upload_bytes


LOGGER = logging.getLogger("aem_notes.cli")


cli = typer.Typer(add_completion=False, help="AEM Notes management commands")


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_log_handlers(storage_root))


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, open_browser=False)


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="AEM_NOTES_ROOT_PATH",
    ),
    open_browser: bool = typer.Option(False, help="Open the site in a browser once started"),
) -> None:
    """Run the FastAPI-powered lecture site."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    store = ContentStore.from_config(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(store, config=app_config, root_path=normalized_root)

    max_upload_bytes = get_max_upload_bytes()
    if max_upload_bytes > 0:
        LOGGER.info("Rejecting uploads larger than %s bytes", max_upload_bytes)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    if open_browser:
        browser_host = host
        if not browser_host or browser_host in {"0.0.0.0", "::"}:
            browser_host = "127.0.0.1"
        url = f"http://{browser_host}:{port}{normalized_root}/"

        def _open_browser_later() -> None:
            time.sleep(1.0)
            try:
                webbrowser.open(url, new=2, autoraise=True)
            except webbrowser.Error as error:
                LOGGER.debug("Could not open browser: %s", error)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def ingest(
    pdf: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="Path to the lecture PDF",
    ),
    unit: str = typer.Option(DEFAULT_UNIT_ID, help="Unit the lecture belongs to"),
    title: Optional[str] = typer.Option(None, help="Lecture title (defaults to the file name)"),
    prompt: Optional[Path] = typer.Option(
        None,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="File holding a custom transcription prompt",
    ),
) -> None:
    """Run a PDF through the generation pipeline and publish the result."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    store = ContentStore.from_config(config)
    try:
        generator = GeminiContentGenerator(
            config.gemini_api_key,
            model=config.gemini_model,
            timeout_seconds=config.ai_timeout_seconds,
        )
    except GenerationError as error:
        typer.echo(f"Generation backend unavailable: {error}")
        raise typer.Exit(code=1) from error

    ingestor = LectureIngestor(config, store, generator)
    upload = LectureUpload(
        data=pdf.read_bytes(),
        filename=pdf.name,
        prompt=prompt.read_text(encoding="utf-8") if prompt is not None else None,
        unit=unit,
        title=title,
    )

    try:
        result = ingestor.ingest(upload)
    except InvalidUploadError as error:
        raise typer.BadParameter(str(error), param_hint="PDF") from error
    except IngestionError as error:
        typer.echo(f"Ingestion failed during {error.stage}: {error}")
        raise typer.Exit(code=1) from error

    typer.echo("Ingestion completed.")
    typer.echo(f"  Lecture ID: {result.lecture_id}")
    typer.echo(f"  Pages: {result.page_count}")
    typer.echo(f"  Sections: {result.metadata.section_count}")
    if result.backup_path is not None:
        typer.echo(f"  Backup: {result.backup_path}")
    for issue in result.final_validation.issues:
        typer.echo(f"  Warning: {issue}")


@cli.command()
def backups() -> None:
    """List the retained backups of the content store, newest first."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    store = ContentStore.from_config(config)
    entries = store.list_backups()
    if not entries:
        typer.echo("No backups found.")
        return
    for entry in entries:
        typer.echo(f"{entry.name}\t{entry.stat().st_size} bytes")


if __name__ == "__main__":
    cli()
