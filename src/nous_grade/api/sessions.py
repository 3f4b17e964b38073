"""Session endpoints: create, read, delete and screenshot upload."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, Request, status

from nous_grade.api.auth import require_api_key
from nous_grade.api.schemas import (
    CreateSessionRequest,
    SessionScreenshotRequest,
    UploadScreenshotRequest,
)
from nous_grade.domain.sessions import ClientMetadata, Session

if TYPE_CHECKING:
    from nous_grade.containers import AppContainer
    from nous_grade.services.lifecycle import ScreenshotIngestion, SessionResults

router = APIRouter(
    prefix="/api/grading", tags=["sessions"], dependencies=[Depends(require_api_key)]
)


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(
    body: CreateSessionRequest, request: Request
) -> dict[str, object]:
    """Open a new grading session."""
    container: AppContainer = request.app.state.container
    client = ClientMetadata(
        user_agent=body.metadata.user_agent,
        extension_version=body.metadata.extension_version,
        ip_address=request.client.host if request.client else None,
    )
    session = await container.lifecycle_manager.create(
        client,
        professor_id=body.professor_id,
        assignment_id=body.assignment_id,
    )
    return {
        "sessionId": str(session.id),
        "status": session.status.value,
        "expiresAt": session.expires_at.isoformat(),
    }


@router.get("/sessions/{session_id}")
async def get_session(session_id: UUID, request: Request) -> dict[str, object]:
    """Return a session without its image payloads."""
    container: AppContainer = request.app.state.container
    session = await container.lifecycle_manager.get_session(session_id)
    return serialize_session(session)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: UUID, request: Request) -> dict[str, object]:
    """Delete a session."""
    container: AppContainer = request.app.state.container
    await container.lifecycle_manager.delete_session(session_id)
    return {"sessionId": str(session_id), "deleted": True}


@router.post("/sessions/{session_id}/screenshots", status_code=status.HTTP_201_CREATED)
async def upload_screenshot(
    session_id: UUID, body: UploadScreenshotRequest, request: Request
) -> dict[str, object]:
    """Upload a screenshot and extract its text."""
    container: AppContainer = request.app.state.container
    ingestion = await container.lifecycle_manager.ingest_screenshot(
        session_id, body.role, body.image_data
    )
    return serialize_ingestion(ingestion)


@router.post("/screenshots", status_code=status.HTTP_201_CREATED)
async def upload_session_screenshot(
    body: SessionScreenshotRequest, request: Request
) -> dict[str, object]:
    """Upload a screenshot for the session named in the body."""
    container: AppContainer = request.app.state.container
    ingestion = await container.lifecycle_manager.ingest_screenshot(
        body.session_id, body.role, body.image_data
    )
    return serialize_ingestion(ingestion)


@router.get("/sessions/{session_id}/results")
async def get_session_results(
    session_id: UUID, request: Request
) -> dict[str, object]:
    """Return the session with its grading outcome."""
    container: AppContainer = request.app.state.container
    results = await container.lifecycle_manager.get_results(session_id)
    return serialize_results(results)


def serialize_session(session: Session) -> dict[str, object]:
    """Dump a session for clients, dropping base64 image data."""
    return session.model_dump(
        mode="json",
        by_alias=True,
        exclude={"screenshots": {"__all__": {"image_data"}}},
    )


def serialize_ingestion(ingestion: ScreenshotIngestion) -> dict[str, object]:
    ocr_result = ingestion.ocr_result
    return {
        "screenshotId": str(ingestion.screenshot.id),
        "ocrResult": (
            ocr_result.model_dump(mode="json", by_alias=True) if ocr_result else None
        ),
        "sessionStatus": ingestion.session_status.value,
        "readyForGrading": ingestion.ready_for_grading,
    }


def serialize_results(results: SessionResults) -> dict[str, object]:
    grading_result = results.grading_result
    return {
        "session": serialize_session(results.session),
        "gradingResult": (
            grading_result.model_dump(mode="json", by_alias=True)
            if grading_result
            else None
        ),
        "ocrResults": [
            item.model_dump(mode="json", by_alias=True) for item in results.ocr_results
        ],
    }
