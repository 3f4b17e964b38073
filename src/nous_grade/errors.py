"""Error taxonomy for the grading session service.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer answers with, so routes never translate errors by hand.
"""

from uuid import UUID


class GradingServiceError(Exception):
    """Base exception for all grading session errors."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict[str, object] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(GradingServiceError):
    """Raised when a request has the wrong shape or is missing fields."""

    code = "VALIDATION_ERROR"
    status_code = 400


class SessionNotFound(GradingServiceError):
    """Raised when a session id is unknown."""

    code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: UUID | str):
        super().__init__("Session not found", {"sessionId": str(session_id)})
        self.session_id = session_id


class SessionExpired(GradingServiceError):
    """Raised when a session is past its expiry time."""

    code = "SESSION_EXPIRED"
    status_code = 410

    def __init__(self, session_id: UUID | str, expires_at: object | None = None):
        details: dict[str, object] = {"sessionId": str(session_id)}
        if expires_at is not None:
            details["expiresAt"] = str(expires_at)
        super().__init__("Session has expired", details)
        self.session_id = session_id


class InvalidState(GradingServiceError):
    """Raised when an operation is not legal in the session's current state."""

    code = "INVALID_SESSION_STATE"
    status_code = 400


class MissingText(GradingServiceError):
    """Raised when grading is requested without text for both answers."""

    code = "INSUFFICIENT_SCREENSHOTS"
    status_code = 400


class InvalidImageFormat(GradingServiceError):
    """Raised when an uploaded image is not a recognized data URL."""

    code = "INVALID_IMAGE_FORMAT"
    status_code = 400


class ImageTooLarge(GradingServiceError):
    """Raised when an uploaded image exceeds the configured ceiling."""

    code = "IMAGE_TOO_LARGE"
    status_code = 413


class UpstreamFailure(GradingServiceError):
    """Raised when the extraction or scoring service fails."""

    status_code = 502

    def __init__(
        self,
        message: str,
        details: dict[str, object] | None = None,
        code: str = "OCR_PROCESSING_FAILED",
    ):
        super().__init__(message, details)
        self.code = code


class GradingFailed(GradingServiceError):
    """Raised client-side when a polled session ends in the error state."""

    code = "GRADING_PROCESSING_FAILED"
    status_code = 502


class PollingTimeout(GradingServiceError):
    """Raised client-side when polling reaches its attempt ceiling."""

    code = "POLLING_TIMEOUT"
    status_code = 504


class AuthenticationError(GradingServiceError):
    """Raised when a request carries no API key or the wrong one."""

    status_code = 401

    def __init__(self, message: str, code: str = "INVALID_API_KEY"):
        super().__init__(message)
        self.code = code
