"""Shared test fixtures."""

import asyncio
import base64
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from nous_grade.adapters.memory_session_repository import InMemorySessionRepository
from nous_grade.config import Settings
from nous_grade.containers import AppContainer
from nous_grade.services.extraction import StructuredOutputClient, TextExtractionService
from nous_grade.services.grading import GradingOrchestrator
from nous_grade.services.lifecycle import SessionLifecycleManager
from nous_grade.services.scoring import AnswerScoringService
from nous_grade.services.store import SessionStore

PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(
    b"\x89PNG\r\n\x1a\nfake screenshot bytes"
).decode()
JPEG_DATA_URL = "data:image/jpeg;base64," + base64.b64encode(
    b"\xff\xd8\xfffake jpeg bytes"
).decode()


def scoring_payload(score: float = 8, max_score: float = 10) -> dict[str, object]:
    return {
        "score": score,
        "max_score": max_score,
        "confidence": 0.87,
        "feedback_summary": "Correct result, the final step skips a justification.",
        "suggested_message": "Nice work! Show why 2x = 4 implies x = 2 next time.",
        "strengths": ["Correct final answer"],
        "weaknesses": ["Missing justification"],
        "rubric_breakdown": [
            {
                "criterion": "Correctness",
                "points_awarded": 6,
                "points_possible": 6,
                "justification": "Matches the model answer.",
            },
            {
                "criterion": "Reasoning",
                "points_awarded": 2,
                "points_possible": 4,
                "justification": "One step is asserted without support.",
            },
        ],
    }


@dataclass
class FakeStructuredClient(StructuredOutputClient):
    """Fake model client answering extraction and scoring calls."""

    subject_text: str = "2x = 4, so x = 2"
    reference_text: str = "2x = 4. Divide both sides by 2: x = 2."
    score_payload: dict[str, object] = field(default_factory=scoring_payload)
    extraction_error: Exception | None = None
    scoring_error: Exception | None = None
    scoring_delay: float = 0.0
    calls: list[dict[str, object]] = field(default_factory=list)

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
        self.calls.append(
            {
                "model": model,
                "prompt": prompt,
                "schema_name": schema_name,
                "image_data_url": image_data_url,
            }
        )
        if schema_name == "text_extract":
            if self.extraction_error is not None:
                raise self.extraction_error
            text = self.reference_text if "professor" in prompt else self.subject_text
            return {
                "text": text,
                "confidence": 0.93,
                "has_math": True,
                "has_handwriting": False,
            }
        if self.scoring_delay:
            await asyncio.sleep(self.scoring_delay)
        if self.scoring_error is not None:
            raise self.scoring_error
        return dict(self.score_payload)

    def scoring_calls(self) -> list[dict[str, object]]:
        return [call for call in self.calls if call["schema_name"] == "answer_score"]


@dataclass
class ManualClock:
    """Clock that only moves when a test advances it."""

    now: datetime = field(default_factory=lambda: datetime(2025, 3, 1, 12, tzinfo=UTC))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def build_manager(  # noqa: PLR0913
    client: FakeStructuredClient,
    clock: ManualClock,
    store: SessionStore | None = None,
    timeout_seconds: float = 5.0,
    max_image_bytes: int = 10 * 1024 * 1024,
    sweep_retention: timedelta = timedelta(seconds=300),
) -> SessionLifecycleManager:
    """Wire a lifecycle manager around the fake model client."""
    session_store = store or SessionStore(InMemorySessionRepository())
    extraction_service = TextExtractionService(
        client=client, model="gpt-4o-mini", reasoning_effort=None, store=False
    )
    scoring_service = AnswerScoringService(
        client=client, model="gpt-4o", reasoning_effort=None, store=False
    )
    orchestrator = GradingOrchestrator(
        store=session_store,
        scoring_service=scoring_service,
        timeout_seconds=timeout_seconds,
        clock=clock,
    )
    return SessionLifecycleManager(
        store=session_store,
        extraction_service=extraction_service,
        orchestrator=orchestrator,
        session_ttl=timedelta(minutes=30),
        max_image_bytes=max_image_bytes,
        estimated_grading_time_ms=25000,
        sweep_retention=sweep_retention,
        clock=clock,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key="test-key",
        openai_api_key="openai-key",
        supabase_url=None,
        supabase_service_key=None,
        session_store_dir=None,
    )


@pytest.fixture
def structured_client() -> FakeStructuredClient:
    return FakeStructuredClient()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def manager(
    structured_client: FakeStructuredClient, clock: ManualClock
) -> SessionLifecycleManager:
    return build_manager(structured_client, clock)


@pytest.fixture
def container(
    settings: Settings, manager: SessionLifecycleManager
) -> AppContainer:
    orchestrator = manager.orchestrator

    async def close_resources() -> None:
        await orchestrator.close()

    return AppContainer(
        settings=settings,
        session_store=manager.store,
        extraction_service=manager.extraction_service,
        scoring_service=orchestrator.scoring_service,
        grading_orchestrator=orchestrator,
        lifecycle_manager=manager,
        close_resources=close_resources,
    )
