"""PDF inspection helpers used to vet uploads before generation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union


LOGGER = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


class DocumentError(RuntimeError):
    """Raised when an uploaded document cannot be read."""


class DocumentDependencyError(DocumentError):
    """Raised when PyMuPDF is not available."""


def get_pdf_page_count(source: Union[Path, bytes]) -> int:
    """Return the number of pages contained in a PDF document.

    Encrypted documents and documents without pages are rejected, since the
    generation service cannot transcribe either.
    """

    try:
        import fitz  # type: ignore
    except ImportError as exc:  # pragma: no cover - runtime check
        raise DocumentDependencyError("PyMuPDF (fitz) is not installed") from exc

    document = None
    try:
        if isinstance(source, Path):
            document = fitz.open(source)
        else:
            document = fitz.open(stream=source, filetype="pdf")
        if document.needs_pass:
            raise DocumentError("PDF document is password protected")
        page_count = int(document.page_count)
    except DocumentError:
        raise
    except Exception as error:
        raise DocumentError("Unable to inspect PDF document") from error
    finally:
        if document is not None:
            document.close()

    if page_count < 1:
        raise DocumentError("PDF document has no pages")
    LOGGER.debug("Inspected PDF with %d page(s)", page_count)
    return page_count


__all__ = ["DocumentDependencyError", "DocumentError", "PDF_MIME_TYPE", "get_pdf_page_count"]
