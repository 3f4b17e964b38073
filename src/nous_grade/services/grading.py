"""Background orchestration of the long-running scoring call."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from nous_grade.domain.analysis import AnswerScore
from nous_grade.domain.sessions import (
    GradingResult,
    RubricItem,
    Session,
    SessionStatus,
    StepPhase,
    TextSource,
)
from nous_grade.services.history import (
    close_step,
    completed_step,
    failed_step,
    transition,
    utc_now,
)
from nous_grade.services.scoring import AnswerScoringService
from nous_grade.services.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GradingJob:
    """Inputs resolved by the lifecycle manager for one grading run."""

    session_id: UUID
    grading_id: UUID
    subject_text: str
    reference_text: str
    subject_source: TextSource
    reference_source: TextSource
    subject_ocr_id: UUID | None = None
    reference_ocr_id: UUID | None = None


@dataclass
class GradingOrchestrator:
    """Runs scoring outside the request that triggered it.

    Each run calls the scoring service once, then re-reads the session under its
    lock and writes exactly one terminal state. A session that was deleted,
    expired, or moved on in the meantime is left untouched.
    """

    store: SessionStore
    scoring_service: AnswerScoringService
    timeout_seconds: float
    clock: Callable[[], datetime] = utc_now
    _tasks: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    def spawn(self, job: GradingJob) -> asyncio.Task[None]:
        """Schedule a grading run without waiting for it."""
        task = asyncio.get_running_loop().create_task(
            self.run(job), name=f"grading-{job.session_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def run(self, job: GradingJob) -> None:
        """Score the answers and record the outcome on the session."""
        result: GradingResult | None = None
        error: str | None = None
        try:
            score = await asyncio.wait_for(
                self.scoring_service.score(job.subject_text, job.reference_text),
                timeout=self.timeout_seconds,
            )
            result = _build_result(job, score, self.clock())
        except TimeoutError:
            error = f"Scoring timed out after {self.timeout_seconds:g} seconds"
            logger.warning(
                "Answer scoring timed out", extra={"session_id": str(job.session_id)}
            )
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.exception(
                "Answer scoring failed", extra={"session_id": str(job.session_id)}
            )

        try:
            await self._record(job, result, error)
        except Exception:
            logger.exception(
                "Failed to record grading outcome",
                extra={"session_id": str(job.session_id)},
            )

    async def close(self) -> None:
        """Wait for in-flight grading runs to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _record(
        self, job: GradingJob, result: GradingResult | None, error: str | None
    ) -> None:
        async with self.store.lock(job.session_id):
            session = await self.store.get(job.session_id)
            now = self.clock()
            if session is None:
                logger.info(
                    "Dropping grading outcome for deleted session",
                    extra={"session_id": str(job.session_id)},
                )
                return
            started_index = session.find_step(
                "grading_started", grading_id=str(job.grading_id)
            )
            if (
                session.is_expired(now)
                or session.status != SessionStatus.PROCESSING_GRADING
                or started_index is None
            ):
                logger.info(
                    "Dropping grading outcome for session in status %s",
                    session.status.value,
                    extra={"session_id": str(job.session_id)},
                )
                return
            if result is not None:
                updated = _complete(session, started_index, result, now)
            else:
                updated = _fail(session, started_index, error or "unknown", now)
            await self.store.put(updated)

        if result is not None:
            logger.info(
                "Grading completed with score %s/%s",
                result.score,
                result.max_score,
                extra={"session_id": str(job.session_id)},
            )


def _build_result(job: GradingJob, score: AnswerScore, now: datetime) -> GradingResult:
    extract = score.result
    return GradingResult(
        id=job.grading_id,
        session_id=job.session_id,
        subject_ocr_id=job.subject_ocr_id,
        reference_ocr_id=job.reference_ocr_id,
        subject_source=job.subject_source,
        reference_source=job.reference_source,
        score=extract.score,
        max_score=extract.max_score,
        feedback_summary=extract.feedback_summary,
        suggested_message=extract.suggested_message,
        rubric_breakdown=[
            RubricItem(
                criterion=item.criterion,
                points_awarded=item.points_awarded,
                points_possible=item.points_possible,
                justification=item.justification,
            )
            for item in extract.rubric_breakdown
        ],
        strengths=extract.strengths,
        weaknesses=extract.weaknesses,
        confidence=extract.confidence,
        processing_time_ms=score.processing_time_ms,
        model=score.model,
        graded_at=now,
    )


def _complete(
    session: Session, started_index: int, result: GradingResult, now: datetime
) -> Session:
    history = close_step(
        session.history,
        started_index,
        StepPhase.COMPLETED,
        now,
        score=result.score,
        max_score=result.max_score,
        confidence=result.confidence,
        processing_time_ms=result.processing_time_ms,
    )
    return transition(
        session,
        SessionStatus.GRADING_COMPLETE,
        now,
        completed_step(
            "grading_complete",
            now,
            grading_id=str(result.id),
            final_score=f"{result.score:g}/{result.max_score:g}",
            model=result.model,
        ),
        history=history,
        grading_result=result,
    )


def _fail(session: Session, started_index: int, error: str, now: datetime) -> Session:
    history = close_step(
        session.history, started_index, StepPhase.FAILED, now, error=error
    )
    grading_id = session.history[started_index].detail.get("grading_id")
    return transition(
        session,
        SessionStatus.ERROR,
        now,
        failed_step("grading_failed", now, error, grading_id=grading_id),
        history=history,
    )
