"""Domain models for grading sessions."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SessionStatus(StrEnum):
    """Lifecycle states of a grading session."""

    INITIALIZED = "initialized"
    AWAITING_SCREENSHOTS = "awaiting_screenshots"
    PROCESSING_OCR = "processing_ocr"
    OCR_COMPLETE = "ocr_complete"
    PROCESSING_GRADING = "processing_grading"
    GRADING_COMPLETE = "grading_complete"
    EXPIRED = "expired"
    ERROR = "error"


TERMINAL_STATUSES = frozenset(
    {SessionStatus.GRADING_COMPLETE, SessionStatus.EXPIRED, SessionStatus.ERROR}
)

UPLOAD_STATUSES = frozenset(
    {
        SessionStatus.INITIALIZED,
        SessionStatus.AWAITING_SCREENSHOTS,
        SessionStatus.PROCESSING_OCR,
        SessionStatus.OCR_COMPLETE,
    }
)


class AnswerRole(StrEnum):
    """Which answer a screenshot or text represents."""

    SUBJECT = "subject"
    REFERENCE = "reference"


class StepPhase(StrEnum):
    """Phase of a processing step."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TextSource(StrEnum):
    """Where the text used for grading came from."""

    OCR = "ocr"
    OVERRIDE = "override"


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ClientMetadata(_Record):
    """Information about the capture client that opened a session."""

    user_agent: str
    extension_version: str
    ip_address: str | None = None


class ImageMetadata(_Record):
    """Metadata derived from an uploaded image."""

    format: str
    size_bytes: int = Field(ge=0)
    checksum: str


class Screenshot(_Record):
    """One uploaded answer image."""

    id: UUID
    session_id: UUID
    role: AnswerRole
    image_data: str
    uploaded_at: datetime
    metadata: ImageMetadata


class OCRResult(_Record):
    """Text extracted from a single screenshot."""

    id: UUID
    screenshot_id: UUID
    session_id: UUID
    role: AnswerRole
    extracted_text: str
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: int = Field(ge=0)
    model: str
    processed_at: datetime


class RubricItem(_Record):
    """Points awarded for one grading criterion."""

    criterion: str
    points_awarded: float = Field(ge=0.0)
    points_possible: float = Field(ge=0.0)
    justification: str = ""


class GradingResult(_Record):
    """Terminal output of the scoring call for a session."""

    id: UUID
    session_id: UUID
    subject_ocr_id: UUID | None
    reference_ocr_id: UUID | None
    subject_source: TextSource
    reference_source: TextSource
    score: float = Field(ge=0.0)
    max_score: float = Field(gt=0.0)
    feedback_summary: str
    suggested_message: str
    rubric_breakdown: list[RubricItem] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: int = Field(ge=0)
    model: str
    graded_at: datetime

    @model_validator(mode="after")
    def _score_within_bounds(self) -> "GradingResult":
        if self.score > self.max_score:
            raise ValueError("score must not exceed max_score")
        return self


class ProcessingStep(_Record):
    """Audit record for one phase of a session."""

    name: str
    phase: StepPhase
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None
    detail: dict[str, object] = Field(default_factory=dict)


class Session(_Record):
    """The canonical record for one grading transaction."""

    id: UUID
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    professor_id: str | None = None
    assignment_id: str | None = None
    client: ClientMetadata
    screenshots: list[Screenshot] = Field(default_factory=list)
    ocr_results: list[OCRResult] = Field(default_factory=list)
    grading_result: GradingResult | None = None
    history: list[ProcessingStep] = Field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        """Return true when the session's lifetime has passed."""
        return now > self.expires_at

    @property
    def latest_step(self) -> ProcessingStep | None:
        return self.history[-1] if self.history else None

    def latest_ocr_result(self, role: AnswerRole) -> OCRResult | None:
        """Return the most recent usable OCR result for a role."""
        for result in reversed(self.ocr_results):
            if result.role == role and result.extracted_text.strip():
                return result
        return None

    def has_ocr_for_all_roles(self) -> bool:
        """Return true when every role has at least one recorded extraction."""
        extracted = {result.role for result in self.ocr_results}
        return all(role in extracted for role in AnswerRole)

    def pending_extractions(self) -> int:
        """Count extraction steps that have started but not finished."""
        return sum(
            1
            for step in self.history
            if step.name.startswith("ocr_processing_")
            and step.phase == StepPhase.PROCESSING
        )

    def find_step(self, name: str, **detail: object) -> int | None:
        """Return the index of the latest step matching a name and detail."""
        for index in range(len(self.history) - 1, -1, -1):
            step = self.history[index]
            if step.name != name:
                continue
            if all(step.detail.get(key) == value for key, value in detail.items()):
                return index
        return None
