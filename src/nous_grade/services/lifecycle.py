"""Session lifecycle state machine for screenshot grading."""

import base64
import binascii
import hashlib
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from nous_grade.domain.sessions import (
    UPLOAD_STATUSES,
    AnswerRole,
    ClientMetadata,
    GradingResult,
    ImageMetadata,
    OCRResult,
    Screenshot,
    Session,
    SessionStatus,
    StepPhase,
    TextSource,
)
from nous_grade.errors import (
    ImageTooLarge,
    InvalidImageFormat,
    InvalidState,
    MissingText,
    SessionExpired,
    SessionNotFound,
    UpstreamFailure,
    ValidationError,
)
from nous_grade.services.extraction import TextExtractionService
from nous_grade.services.grading import GradingJob, GradingOrchestrator
from nous_grade.services.history import (
    close_step,
    completed_step,
    expire,
    processing_step,
    transition,
    utc_now,
)
from nous_grade.services.polling import StatusReport, build_status_report
from nous_grade.services.store import SessionStore

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_FORMATS = frozenset({"png", "jpeg", "jpg", "webp", "gif"})

_DATA_URL_PATTERN = re.compile(
    r"^data:image/(?P<format>[A-Za-z0-9.+-]+);base64,(?P<payload>.+)$", re.DOTALL
)


@dataclass(frozen=True)
class ScreenshotIngestion:
    """Outcome of a successful screenshot upload."""

    screenshot: Screenshot
    ocr_result: OCRResult | None
    session_status: SessionStatus
    ready_for_grading: bool


@dataclass(frozen=True)
class GradingTicket:
    """Returned immediately when grading is accepted."""

    grading_id: UUID
    estimated_completion_ms: int
    status: SessionStatus


@dataclass(frozen=True)
class SessionResults:
    """Session snapshot with its grading outcome, if any."""

    session: Session
    grading_result: GradingResult | None
    ocr_results: list[OCRResult]


@dataclass
class SessionLifecycleManager:
    """Owns every transition of a grading session.

    All writes go through ``SessionStore.lock`` as a read-modify-write of the
    whole record. Readiness for grading is always derived from the record just
    read under the lock, never from a value computed before an await.
    """

    store: SessionStore
    extraction_service: TextExtractionService
    orchestrator: GradingOrchestrator
    session_ttl: timedelta
    max_image_bytes: int
    estimated_grading_time_ms: int
    sweep_retention: timedelta = timedelta(0)
    clock: Callable[[], datetime] = utc_now

    async def create(
        self,
        client: ClientMetadata,
        professor_id: str | None = None,
        assignment_id: str | None = None,
    ) -> Session:
        """Create a session that is ready to receive screenshots."""
        missing = [
            name
            for name, value in (
                ("userAgent", client.user_agent),
                ("extensionVersion", client.extension_version),
            )
            if not value.strip()
        ]
        if missing:
            raise ValidationError(
                "Missing client metadata", {"missingFields": missing}
            )

        now = self.clock()
        session_id = uuid4()
        session = Session(
            id=session_id,
            status=SessionStatus.INITIALIZED,
            created_at=now,
            updated_at=now,
            expires_at=now + self.session_ttl,
            professor_id=professor_id,
            assignment_id=assignment_id,
            client=client,
            history=[
                completed_step(
                    "session_created",
                    now,
                    session_id=str(session_id),
                    extension_version=client.extension_version,
                )
            ],
        )
        async with self.store.lock(session_id):
            await self.store.put(session)
            session = transition(
                session,
                SessionStatus.AWAITING_SCREENSHOTS,
                now,
                completed_step("awaiting_screenshots", now),
            )
            await self.store.put(session)

        logger.info(
            "Created grading session",
            extra={"session_id": str(session_id), "expires_at": str(session.expires_at)},
        )
        return session

    async def ingest_screenshot(
        self, session_id: UUID, role: AnswerRole, image_data: str
    ) -> ScreenshotIngestion:
        """Store a screenshot, extract its text, and re-evaluate readiness."""
        await self.get_session(session_id)
        metadata = inspect_image(image_data, self.max_image_bytes)
        screenshot_id = uuid4()
        step_name = f"ocr_processing_{role.value}"

        def attach(session: Session, now: datetime) -> Session:
            if session.status not in UPLOAD_STATUSES:
                raise InvalidState(
                    "Session is not accepting screenshots",
                    {"currentStatus": session.status.value},
                )
            screenshot = Screenshot(
                id=screenshot_id,
                session_id=session.id,
                role=role,
                image_data=image_data,
                uploaded_at=now,
                metadata=metadata,
            )
            return transition(
                session,
                SessionStatus.PROCESSING_OCR,
                now,
                completed_step(
                    f"screenshot_uploaded_{role.value}",
                    now,
                    screenshot_id=str(screenshot_id),
                    size_bytes=metadata.size_bytes,
                    format=metadata.format,
                ),
                processing_step(
                    step_name,
                    now,
                    screenshot_id=str(screenshot_id),
                    model=self.extraction_service.model,
                ),
                screenshots=[*session.screenshots, screenshot],
            )

        session = await self._mutate(session_id, attach)
        screenshot = session.screenshots[-1]
        logger.info(
            "Screenshot stored, extracting text",
            extra={"session_id": str(session_id), "role": role.value},
        )

        try:
            extraction = await self.extraction_service.extract(image_data, role)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.exception(
                "Text extraction failed",
                extra={"session_id": str(session_id), "role": role.value},
            )
            await self._record_extraction_failure(
                session_id, step_name, screenshot_id, error
            )
            raise UpstreamFailure(
                "OCR processing failed",
                {"role": role.value, "error": error},
                code="OCR_PROCESSING_FAILED",
            ) from exc

        ocr_result = OCRResult(
            id=uuid4(),
            screenshot_id=screenshot_id,
            session_id=session_id,
            role=role,
            extracted_text=extraction.text,
            confidence=extraction.confidence,
            processing_time_ms=extraction.processing_time_ms,
            model=extraction.model,
            processed_at=self.clock(),
        )

        def record(session: Session, now: datetime) -> Session:
            ocr_results = [*session.ocr_results, ocr_result]
            index = session.find_step(step_name, screenshot_id=str(screenshot_id))
            history = session.history
            if index is not None:
                history = close_step(
                    history,
                    index,
                    StepPhase.COMPLETED,
                    now,
                    confidence=ocr_result.confidence,
                    text_length=len(ocr_result.extracted_text),
                    processing_time_ms=ocr_result.processing_time_ms,
                )
            updated = session.model_copy(
                update={"ocr_results": ocr_results, "history": history}
            )
            if session.status not in UPLOAD_STATUSES:
                return updated.model_copy(update={"updated_at": now})
            return _settle_ocr_status(updated, now)

        session = await self._mutate(session_id, record)
        ready = session.status == SessionStatus.OCR_COMPLETE
        logger.info(
            "Text extraction recorded",
            extra={
                "session_id": str(session_id),
                "role": role.value,
                "status": session.status.value,
            },
        )
        return ScreenshotIngestion(
            screenshot=screenshot,
            ocr_result=ocr_result,
            session_status=session.status,
            ready_for_grading=ready,
        )

    async def trigger_grading(
        self,
        session_id: UUID,
        subject_override: str | None = None,
        reference_override: str | None = None,
    ) -> GradingTicket:
        """Accept a grading request and hand it to the orchestrator."""
        grading_id = uuid4()
        accepted: list[GradingJob] = []

        def start(session: Session, now: datetime) -> Session:
            subject = _resolve_text(session, AnswerRole.SUBJECT, subject_override)
            reference = _resolve_text(session, AnswerRole.REFERENCE, reference_override)
            if subject is None or reference is None:
                raise MissingText(
                    "Insufficient OCR results for grading",
                    {
                        "hasSubjectText": subject is not None,
                        "hasReferenceText": reference is not None,
                        "requiredRoles": [role.value for role in AnswerRole],
                    },
                )
            if session.status != SessionStatus.OCR_COMPLETE:
                raise InvalidState(
                    "Session not ready for grading",
                    {
                        "currentStatus": session.status.value,
                        "requiredStatus": SessionStatus.OCR_COMPLETE.value,
                    },
                )
            job = GradingJob(
                session_id=session.id,
                grading_id=grading_id,
                subject_text=subject[0],
                reference_text=reference[0],
                subject_source=subject[1],
                reference_source=reference[1],
                subject_ocr_id=subject[2],
                reference_ocr_id=reference[2],
            )
            accepted.append(job)
            return transition(
                session,
                SessionStatus.PROCESSING_GRADING,
                now,
                processing_step(
                    "grading_started",
                    now,
                    grading_id=str(grading_id),
                    model=self.orchestrator.scoring_service.model,
                    subject_source=job.subject_source.value,
                    reference_source=job.reference_source.value,
                    subject_ocr_id=_optional_str(job.subject_ocr_id),
                    reference_ocr_id=_optional_str(job.reference_ocr_id),
                ),
            )

        session = await self._mutate(session_id, start)
        self.orchestrator.spawn(accepted[0])
        logger.info(
            "Grading started",
            extra={"session_id": str(session_id), "grading_id": str(grading_id)},
        )
        return GradingTicket(
            grading_id=grading_id,
            estimated_completion_ms=self.estimated_grading_time_ms,
            status=session.status,
        )

    async def get_session(self, session_id: UUID) -> Session:
        """Return the session, raising when it is unknown or expired."""
        session = await self._read(session_id)
        if session.status == SessionStatus.EXPIRED:
            raise SessionExpired(session_id, session.expires_at)
        return session

    async def get_results(self, session_id: UUID) -> SessionResults:
        """Return the session with its grading result, if any."""
        session = await self.get_session(session_id)
        return SessionResults(
            session=session,
            grading_result=session.grading_result,
            ocr_results=list(session.ocr_results),
        )

    async def get_status(self, session_id: UUID) -> StatusReport:
        """Return the polling view of a session; expiry is reported, not raised."""
        session = await self._read(session_id)
        return build_status_report(session)

    async def delete_session(self, session_id: UUID) -> None:
        """Remove a session record."""
        if not await self.store.delete(session_id):
            raise SessionNotFound(session_id)
        logger.info("Deleted grading session", extra={"session_id": str(session_id)})

    async def sweep_expired(self) -> int:
        """Purge sessions whose expiry is older than the retention window."""
        removed = await self.store.sweep(self.clock() - self.sweep_retention)
        if removed:
            logger.info("Swept %d expired sessions", removed)
        return removed

    async def _read(self, session_id: UUID) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.status == SessionStatus.EXPIRED or not session.is_expired(
            self.clock()
        ):
            return session
        async with self.store.lock(session_id):
            session = await self.store.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            if session.status != SessionStatus.EXPIRED:
                session = expire(session, self.clock())
                await self.store.put(session)
                logger.info(
                    "Session expired", extra={"session_id": str(session_id)}
                )
        return session

    async def _mutate(
        self, session_id: UUID, change: Callable[[Session, datetime], Session]
    ) -> Session:
        async with self.store.lock(session_id):
            session = await self.store.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            now = self.clock()
            if session.status == SessionStatus.EXPIRED:
                raise SessionExpired(session_id, session.expires_at)
            if session.is_expired(now):
                await self.store.put(expire(session, now))
                raise SessionExpired(session_id, session.expires_at)
            updated = change(session, now)
            await self.store.put(updated)
            return updated

    async def _record_extraction_failure(
        self, session_id: UUID, step_name: str, screenshot_id: UUID, error: str
    ) -> None:
        async with self.store.lock(session_id):
            session = await self.store.get(session_id)
            if session is None:
                return
            now = self.clock()
            history = session.history
            index = session.find_step(step_name, screenshot_id=str(screenshot_id))
            if index is not None:
                history = close_step(history, index, StepPhase.FAILED, now, error=error)
            if session.status in UPLOAD_STATUSES:
                updated = transition(session, SessionStatus.ERROR, now, history=history)
            else:
                updated = session.model_copy(
                    update={"history": history, "updated_at": now}
                )
            await self.store.put(updated)


def inspect_image(image_data: str, max_bytes: int) -> ImageMetadata:
    """Validate a data URL image and derive its metadata."""
    match = _DATA_URL_PATTERN.match(image_data)
    if match is None:
        raise InvalidImageFormat(
            "Invalid image format",
            {"expectedFormat": "data:image/png;base64,... or data:image/jpeg;base64,..."},
        )
    image_format = match.group("format").lower()
    if image_format not in SUPPORTED_IMAGE_FORMATS:
        raise InvalidImageFormat(
            "Unsupported image format",
            {
                "format": image_format,
                "supportedFormats": sorted(SUPPORTED_IMAGE_FORMATS),
            },
        )
    payload = match.group("payload")
    size_bytes = len(payload) * 3 // 4
    if size_bytes > max_bytes:
        raise ImageTooLarge(
            "Image too large",
            {
                "imageSize": size_bytes,
                "maxSize": max_bytes,
                "maxSizeMB": round(max_bytes / 1024 / 1024),
            },
        )
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageFormat(
            "Image payload is not valid base64", {"format": image_format}
        ) from exc
    return ImageMetadata(
        format=image_format.upper(),
        size_bytes=size_bytes,
        checksum=hashlib.sha256(image_data.encode("utf-8")).hexdigest(),
    )


def _settle_ocr_status(session: Session, now: datetime) -> Session:
    """Derive the post-extraction status from the persisted record."""
    if session.has_ocr_for_all_roles():
        if session.status == SessionStatus.OCR_COMPLETE:
            return session.model_copy(update={"updated_at": now})
        return transition(
            session,
            SessionStatus.OCR_COMPLETE,
            now,
            completed_step(
                "ready_for_grading",
                now,
                total_screenshots=len(session.screenshots),
                total_ocr_results=len(session.ocr_results),
            ),
        )
    if session.pending_extractions():
        return transition(session, SessionStatus.PROCESSING_OCR, now)
    return transition(session, SessionStatus.AWAITING_SCREENSHOTS, now)


def _resolve_text(
    session: Session, role: AnswerRole, override: str | None
) -> tuple[str, TextSource, UUID | None] | None:
    if override is not None and override.strip():
        return override.strip(), TextSource.OVERRIDE, None
    result = session.latest_ocr_result(role)
    if result is None:
        return None
    return result.extracted_text, TextSource.OCR, result.id


def _optional_str(value: UUID | None) -> str | None:
    return str(value) if value is not None else None
