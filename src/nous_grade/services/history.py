"""Helpers for building session transitions and step history."""

from datetime import UTC, datetime

from nous_grade.domain.sessions import (
    ProcessingStep,
    Session,
    SessionStatus,
    StepPhase,
)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def completed_step(name: str, now: datetime, **detail: object) -> ProcessingStep:
    """Build a step that started and finished at ``now``."""
    return ProcessingStep(
        name=name,
        phase=StepPhase.COMPLETED,
        started_at=now,
        completed_at=now,
        detail=detail,
    )


def processing_step(name: str, now: datetime, **detail: object) -> ProcessingStep:
    """Build a step that is still running."""
    return ProcessingStep(
        name=name, phase=StepPhase.PROCESSING, started_at=now, detail=detail
    )


def failed_step(
    name: str, now: datetime, error: str, **detail: object
) -> ProcessingStep:
    """Build a step that started and failed at ``now``."""
    return ProcessingStep(
        name=name,
        phase=StepPhase.FAILED,
        started_at=now,
        completed_at=now,
        error=error,
        detail=detail,
    )


def close_step(  # noqa: PLR0913
    history: list[ProcessingStep],
    index: int,
    phase: StepPhase,
    now: datetime,
    error: str | None = None,
    **detail: object,
) -> list[ProcessingStep]:
    """Return a copy of the history with one running step finished."""
    step = history[index]
    closed = step.model_copy(
        update={
            "phase": phase,
            "completed_at": now,
            "error": error,
            "detail": {**step.detail, **detail},
        }
    )
    return [*history[:index], closed, *history[index + 1 :]]


def transition(
    session: Session,
    status: SessionStatus,
    now: datetime,
    *steps: ProcessingStep,
    **updates: object,
) -> Session:
    """Return a copy of the session moved to a new status."""
    history = updates.pop("history", session.history)
    return session.model_copy(
        update={
            **updates,
            "status": status,
            "updated_at": now,
            "history": [*history, *steps],
        }
    )


def expire(session: Session, now: datetime) -> Session:
    """Return a copy of the session marked expired."""
    return transition(
        session,
        SessionStatus.EXPIRED,
        now,
        completed_step(
            "session_expired",
            now,
            previous_status=session.status.value,
            expires_at=session.expires_at.isoformat(),
        ),
    )
