"""Tests for the text extraction service."""

import asyncio

import pytest
from pydantic import ValidationError

from nous_grade.domain.sessions import AnswerRole
from nous_grade.services.extraction import TextExtractionService
from tests.conftest import PNG_DATA_URL, FakeStructuredClient


class _MalformedClient(FakeStructuredClient):
    async def generate(self, **kwargs) -> dict[str, object]:  # type: ignore[override]
        return {"text": "x = 2", "confidence": 1.7}


def test_extraction_service_returns_trimmed_text() -> None:
    client = FakeStructuredClient(subject_text="  x = 2 \n")
    service = TextExtractionService(
        client=client, model="gpt-4o-mini", reasoning_effort="low", store=False
    )

    result = asyncio.run(service.extract(PNG_DATA_URL, AnswerRole.SUBJECT))

    assert result.text == "x = 2"
    assert result.confidence == 0.93
    assert result.model == "gpt-4o-mini"
    assert result.processing_time_ms >= 0
    call = client.calls[0]
    assert call["schema_name"] == "text_extract"
    assert call["image_data_url"] == PNG_DATA_URL
    assert "student's answer" in call["prompt"]


def test_extraction_prompt_names_reference_role() -> None:
    client = FakeStructuredClient()
    service = TextExtractionService(
        client=client, model="gpt-4o-mini", reasoning_effort=None, store=False
    )

    result = asyncio.run(service.extract(PNG_DATA_URL, AnswerRole.REFERENCE))

    assert "professor's model answer" in client.calls[0]["prompt"]
    assert result.text == client.reference_text


def test_extraction_service_rejects_out_of_range_confidence() -> None:
    service = TextExtractionService(
        client=_MalformedClient(),
        model="gpt-4o-mini",
        reasoning_effort=None,
        store=False,
    )

    with pytest.raises(ValidationError):
        asyncio.run(service.extract(PNG_DATA_URL, AnswerRole.SUBJECT))
