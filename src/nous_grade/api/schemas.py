"""Request and response models for the grading API."""

from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from nous_grade.domain.sessions import AnswerRole

_LEGACY_ROLES = {
    "student_answer": AnswerRole.SUBJECT.value,
    "professor_answer": AnswerRole.REFERENCE.value,
}


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClientInfo(_Payload):
    """Capture client details sent when opening a session."""

    user_agent: str = Field(min_length=1)
    extension_version: str = Field(min_length=1)


class CreateSessionRequest(_Payload):
    """Body of ``POST /api/grading/sessions``."""

    professor_id: str | None = None
    assignment_id: str | None = None
    metadata: ClientInfo


class UploadScreenshotRequest(_Payload):
    """Body of a screenshot upload."""

    role: AnswerRole = Field(validation_alias=AliasChoices("role", "type"))
    image_data: str = Field(min_length=1)

    @field_validator("role", mode="before")
    @classmethod
    def _map_legacy_role(cls, value: object) -> object:
        if isinstance(value, str):
            return _LEGACY_ROLES.get(value, value)
        return value


class SessionScreenshotRequest(UploadScreenshotRequest):
    """Screenshot upload that names its session in the body."""

    session_id: UUID = Field(validation_alias=AliasChoices("sessionId", "session_id"))


class TriggerGradingRequest(_Payload):
    """Body of ``POST /api/grading/grade``."""

    session_id: UUID
    subject_text_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "subjectTextOverride", "subject_text_override", "studentAnswer"
        ),
    )
    reference_text_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "referenceTextOverride",
            "reference_text_override",
            "professorAnswer",
            "modelAnswer",
        ),
    )
