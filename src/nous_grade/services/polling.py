"""Polling protocol for observing long-running grading."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar
from uuid import UUID

from nous_grade.domain.sessions import TERMINAL_STATUSES, Session, SessionStatus
from nous_grade.errors import PollingTimeout

DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_POLL_ATTEMPTS = 30

T = TypeVar("T")


@dataclass(frozen=True)
class StepSummary:
    """Polling view of one processing step."""

    step: str
    status: str
    started_at: datetime
    completed_at: datetime | None
    error: str | None


@dataclass(frozen=True)
class StatusReport:
    """What a polling client sees for a session."""

    session_id: UUID
    status: SessionStatus
    latest_step: str | None
    step_status: str | None
    has_grading_result: bool
    processing_steps: list[StepSummary]

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def build_status_report(session: Session) -> StatusReport:
    """Summarize a session for polling clients."""
    latest = session.latest_step
    return StatusReport(
        session_id=session.id,
        status=session.status,
        latest_step=latest.name if latest else None,
        step_status=latest.phase.value if latest else None,
        has_grading_result=session.grading_result is not None,
        processing_steps=[
            StepSummary(
                step=step.name,
                status=step.phase.value,
                started_at=step.started_at,
                completed_at=step.completed_at,
                error=step.error,
            )
            for step in session.history
        ],
    )


def is_terminal_status(status: str) -> bool:
    return status in {item.value for item in TERMINAL_STATUSES}


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Wait, fetch, and repeat until ``is_done`` holds or attempts run out.

    Giving up only stops this client; the server keeps working and a later
    poll can still observe the outcome.
    """
    for _ in range(max_attempts):
        await sleep(interval_seconds)
        value = await fetch()
        if is_done(value):
            return value
    raise PollingTimeout(
        "Grading result not available within the polling window",
        {
            "attempts": max_attempts,
            "intervalSeconds": interval_seconds,
        },
    )
