"""Text generation backends used by the ingestion pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence

from google import genai
from google.genai import types


LOGGER = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    """Raised when the generation service fails or returns nothing usable."""


@dataclass(frozen=True)
class PromptPart:
    """One element of a generation request: text or an inline binary payload."""

    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "PromptPart":
        return cls(text=text)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "PromptPart":
        return cls(data=data, mime_type=mime_type)

    @property
    def is_inline_data(self) -> bool:
        return self.data is not None


class ContentGenerator(Protocol):
    """Protocol describing a single-shot text completion service."""

    def generate(self, parts: Sequence[PromptPart]) -> str:
        """Return the completion text for *parts*."""


class GeminiContentGenerator:
    """:class:`ContentGenerator` backed by the Google Gen AI SDK."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str,
        timeout_seconds: float,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise GenerationError("GEMINI_API_KEY is not set")
            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
            )
        self._client = client
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    @staticmethod
    def _to_sdk_parts(parts: Sequence[PromptPart]) -> List[types.Part]:
        converted: List[types.Part] = []
        for part in parts:
            if part.is_inline_data:
                converted.append(
                    types.Part.from_bytes(
                        data=part.data,
                        mime_type=part.mime_type or "application/octet-stream",
                    )
                )
            elif part.text is not None:
                converted.append(types.Part.from_text(text=part.text))
        return converted

    def generate(self, parts: Sequence[PromptPart]) -> str:
        contents = [types.Content(role="user", parts=self._to_sdk_parts(parts))]
        start = time.perf_counter()
        try:
            response = self._client.models.generate_content(
                model=self._model,
                contents=contents,
            )
        except Exception as error:
            duration_ms = (time.perf_counter() - start) * 1000.0
            LOGGER.warning(
                "Gemini request to %s failed after %.0f ms: %s: %s",
                self._model,
                duration_ms,
                error.__class__.__name__,
                error,
            )
            raise GenerationError(f"Gemini request failed: {error}") from error

        text = getattr(response, "text", None) or ""
        duration_ms = (time.perf_counter() - start) * 1000.0
        LOGGER.debug(
            "Gemini response from %s received in %.0f ms (%d characters)",
            self._model,
            duration_ms,
            len(text),
        )
        if not text.strip():
            raise GenerationError("Gemini returned an empty completion")
        return text


__all__ = ["ContentGenerator", "GeminiContentGenerator", "GenerationError", "PromptPart"]
