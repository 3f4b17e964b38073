"""Grading endpoints: trigger, status polling and results."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, Request, status

from nous_grade.api.auth import require_api_key
from nous_grade.api.schemas import TriggerGradingRequest
from nous_grade.api.sessions import serialize_results

if TYPE_CHECKING:
    from nous_grade.containers import AppContainer

router = APIRouter(
    prefix="/api/grading", tags=["grading"], dependencies=[Depends(require_api_key)]
)


@router.post("/grade", status_code=status.HTTP_202_ACCEPTED)
async def trigger_grading(
    body: TriggerGradingRequest, request: Request
) -> dict[str, object]:
    """Start grading in the background and return immediately."""
    container: AppContainer = request.app.state.container
    ticket = await container.lifecycle_manager.trigger_grading(
        body.session_id,
        subject_override=body.subject_text_override,
        reference_override=body.reference_text_override,
    )
    return {
        "gradingId": str(ticket.grading_id),
        "estimatedCompletionTimeMs": ticket.estimated_completion_ms,
        "status": ticket.status.value,
    }


@router.get("/status/{session_id}")
async def grading_status(session_id: UUID, request: Request) -> dict[str, object]:
    """Return the polling view of a session."""
    container: AppContainer = request.app.state.container
    report = await container.lifecycle_manager.get_status(session_id)
    return {
        "sessionId": str(report.session_id),
        "status": report.status.value,
        "latestStep": report.latest_step,
        "stepStatus": report.step_status,
        "hasGradingResult": report.has_grading_result,
        "terminal": report.terminal,
        "processingSteps": [
            {
                "step": step.step,
                "status": step.status,
                "startedAt": step.started_at.isoformat(),
                "completedAt": (
                    step.completed_at.isoformat() if step.completed_at else None
                ),
                "error": step.error,
            }
            for step in report.processing_steps
        ],
    }


@router.get("/results/{session_id}")
async def grading_results(session_id: UUID, request: Request) -> dict[str, object]:
    """Return the session with its grading outcome."""
    container: AppContainer = request.app.state.container
    results = await container.lifecycle_manager.get_results(session_id)
    return serialize_results(results)
