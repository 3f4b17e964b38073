"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from supabase import create_client

from nous_grade.adapters.json_file_session_repository import (
    JsonFileSessionRepository,
)
from nous_grade.adapters.memory_session_repository import InMemorySessionRepository
from nous_grade.adapters.openai_structured_client import OpenAIStructuredClient
from nous_grade.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from nous_grade.config import Settings, use_supabase
from nous_grade.services.extraction import TextExtractionService
from nous_grade.services.grading import GradingOrchestrator
from nous_grade.services.lifecycle import SessionLifecycleManager
from nous_grade.services.scoring import AnswerScoringService
from nous_grade.services.store import SessionRepository, SessionStore


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    session_store: SessionStore
    extraction_service: TextExtractionService
    scoring_service: AnswerScoringService
    grading_orchestrator: GradingOrchestrator
    lifecycle_manager: SessionLifecycleManager
    close_resources: Callable[[], Awaitable[None]]


def build_session_repository(settings: Settings) -> SessionRepository:
    """Pick the session persistence backend from settings."""
    if use_supabase(settings):
        client = create_client(settings.supabase_url, settings.supabase_service_key)
        return SupabaseSessionRepository(client)
    if settings.session_store_dir:
        return JsonFileSessionRepository.create(settings.session_store_dir)
    return InMemorySessionRepository()


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    session_store = SessionStore(build_session_repository(resolved_settings))
    openai_client = OpenAIStructuredClient.create(resolved_settings.openai_api_key)
    extraction_service = TextExtractionService(
        client=openai_client,
        model=resolved_settings.openai_ocr_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
    )
    scoring_service = AnswerScoringService(
        client=openai_client,
        model=resolved_settings.openai_grading_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
        max_score=resolved_settings.max_score,
    )
    orchestrator = GradingOrchestrator(
        store=session_store,
        scoring_service=scoring_service,
        timeout_seconds=resolved_settings.grading_timeout_seconds,
    )
    lifecycle_manager = SessionLifecycleManager(
        store=session_store,
        extraction_service=extraction_service,
        orchestrator=orchestrator,
        session_ttl=timedelta(seconds=resolved_settings.session_ttl_seconds),
        max_image_bytes=resolved_settings.max_image_bytes,
        estimated_grading_time_ms=resolved_settings.estimated_grading_time_ms,
        sweep_retention=timedelta(seconds=resolved_settings.sweep_retention_seconds),
    )

    async def close_resources() -> None:
        await orchestrator.close()
        await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        session_store=session_store,
        extraction_service=extraction_service,
        scoring_service=scoring_service,
        grading_orchestrator=orchestrator,
        lifecycle_manager=lifecycle_manager,
        close_resources=close_resources,
    )
