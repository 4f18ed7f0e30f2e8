"""Processing steps applied to generated lecture HTML."""

from .documents import DocumentDependencyError, DocumentError, get_pdf_page_count
from .formatting import HtmlFormatter, IndentingHtmlFormatter, post_process_html
from .generation import ContentGenerator, GeminiContentGenerator, GenerationError, PromptPart
from .metadata import LectureMetadata, extract_lecture_metadata
from .sanitizer import clean_response
from .validation import ValidationReport, validate_lecture_html

__all__ = [
    "ContentGenerator",
    "DocumentDependencyError",
    "DocumentError",
    "GeminiContentGenerator",
    "GenerationError",
    "HtmlFormatter",
    "IndentingHtmlFormatter",
    "LectureMetadata",
    "PromptPart",
    "ValidationReport",
    "clean_response",
    "extract_lecture_metadata",
    "get_pdf_page_count",
    "post_process_html",
    "validate_lecture_html",
]
