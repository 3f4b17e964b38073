"""Text extraction service for answer screenshots."""

import time
from dataclasses import dataclass
from typing import Protocol

from nous_grade.domain.analysis import TextExtract, TextExtraction
from nous_grade.domain.sessions import AnswerRole

EXTRACTION_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "text": {"type": "string"},
        "confidence": {"type": "number", "minimum": 0.0, "maximum": 1.0},
        "has_math": {"type": "boolean"},
        "has_handwriting": {"type": "boolean"},
    },
    "required": ["text", "confidence", "has_math", "has_handwriting"],
    "additionalProperties": False,
}

_ROLE_LABELS = {
    AnswerRole.SUBJECT: "student's answer",
    AnswerRole.REFERENCE: "professor's model answer",
}


class StructuredOutputClient(Protocol):
    """Interface for LLM calls that return schema-conforming JSON."""

    async def generate(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema: dict[str, object],
        schema_name: str,
        image_data_url: str | None = None,
    ) -> dict[str, object]:
        """Return structured output data."""


@dataclass
class TextExtractionService:
    """Service that transcribes answer screenshots via the configured client."""

    client: StructuredOutputClient
    model: str
    reasoning_effort: str | None
    store: bool

    async def extract(self, image_data_url: str, role: AnswerRole) -> TextExtraction:
        """Extract the text of one screenshot."""
        started = time.monotonic()
        raw = await self.client.generate(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            store=self.store,
            prompt=_build_prompt(role),
            schema=EXTRACTION_SCHEMA,
            schema_name="text_extract",
            image_data_url=image_data_url,
        )
        extract = TextExtract.model_validate(raw)
        return TextExtraction(
            text=extract.text.strip(),
            confidence=extract.confidence,
            processing_time_ms=_elapsed_ms(started),
            model=self.model,
        )


def _build_prompt(role: AnswerRole) -> str:
    label = _ROLE_LABELS[role]
    return (
        f"Transcribe every piece of text in this image of a {label}. "
        "Preserve the order of steps, equations, numbers and labels. "
        "Write mathematical notation in plain text or LaTeX. "
        "Report a confidence between 0 and 1 for the whole transcription, "
        "and flag whether the image contains math or handwriting."
    )


def _elapsed_ms(started: float) -> int:
    return round((time.monotonic() - started) * 1000)
