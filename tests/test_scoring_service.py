"""Tests for the answer scoring service."""

import asyncio

import pytest
from pydantic import ValidationError

from nous_grade.services.scoring import SCORING_SCHEMA, AnswerScoringService
from tests.conftest import FakeStructuredClient, scoring_payload


def test_scoring_service_validates_output() -> None:
    client = FakeStructuredClient()
    service = AnswerScoringService(
        client=client, model="gpt-4o", reasoning_effort=None, store=False
    )

    score = asyncio.run(service.score("x = 2", "2x = 4 so x = 2"))

    assert score.result.score == 8
    assert score.result.rubric_breakdown[1].criterion == "Reasoning"
    assert score.model == "gpt-4o"
    call = client.scoring_calls()[0]
    assert "STUDENT'S ANSWER:\nx = 2" in call["prompt"]
    assert "out of 10 points" in call["prompt"]
    assert call["image_data_url"] is None


def test_scoring_service_rejects_score_above_maximum() -> None:
    client = FakeStructuredClient(score_payload=scoring_payload(score=11))
    service = AnswerScoringService(
        client=client, model="gpt-4o", reasoning_effort=None, store=False
    )

    with pytest.raises(ValidationError):
        asyncio.run(service.score("x = 2", "x = 2"))


def test_scoring_service_rejects_unexpected_scale() -> None:
    client = FakeStructuredClient(score_payload=scoring_payload(score=4, max_score=5))
    service = AnswerScoringService(
        client=client, model="gpt-4o", reasoning_effort=None, store=False
    )

    with pytest.raises(ValueError, match="max_score"):
        asyncio.run(service.score("x = 2", "x = 2"))


def test_scoring_schema_requires_every_property() -> None:
    assert set(SCORING_SCHEMA["required"]) == set(SCORING_SCHEMA["properties"])
