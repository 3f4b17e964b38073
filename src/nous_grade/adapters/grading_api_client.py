"""HTTPX client for the grading session API."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from nous_grade.errors import (
    GradingFailed,
    GradingServiceError,
    SessionExpired,
)
from nous_grade.services.polling import (
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    is_terminal_status,
    poll_until,
)


class GradingApiError(GradingServiceError):
    """Error response returned by the grading API."""

    def __init__(self, status_code: int, code: str, message: str, details: dict):
        super().__init__(message, details)
        self.status_code = status_code
        self.code = code


@dataclass
class HttpxGradingApiClient:
    """Grading API client that observes grading by polling."""

    base_url: str
    api_key: str
    http_client: httpx.AsyncClient
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    @classmethod
    def create(cls, base_url: str, api_key: str) -> "HttpxGradingApiClient":
        """Create a client with a managed httpx session."""
        return cls(base_url=base_url, api_key=api_key, http_client=httpx.AsyncClient())

    async def create_session(
        self, user_agent: str, extension_version: str
    ) -> dict[str, object]:
        """Open a new grading session."""
        return await self._request(
            "POST",
            "/api/grading/sessions",
            json={
                "metadata": {
                    "userAgent": user_agent,
                    "extensionVersion": extension_version,
                }
            },
        )

    async def upload_screenshot(
        self, session_id: str, role: str, image_data: str
    ) -> dict[str, object]:
        """Upload one answer screenshot; text extraction runs before it returns."""
        return await self._request(
            "POST",
            f"/api/grading/sessions/{session_id}/screenshots",
            json={"role": role, "imageData": image_data},
            timeout=60,
        )

    async def trigger_grading(
        self,
        session_id: str,
        subject_text: str | None = None,
        reference_text: str | None = None,
    ) -> dict[str, object]:
        """Start grading and return the acceptance ticket."""
        payload: dict[str, object] = {"sessionId": session_id}
        if subject_text is not None:
            payload["subjectTextOverride"] = subject_text
        if reference_text is not None:
            payload["referenceTextOverride"] = reference_text
        return await self._request("POST", "/api/grading/grade", json=payload)

    async def get_status(self, session_id: str) -> dict[str, object]:
        """Return the polling status for a session."""
        return await self._request("GET", f"/api/grading/status/{session_id}")

    async def get_results(self, session_id: str) -> dict[str, object]:
        """Return the session results."""
        return await self._request("GET", f"/api/grading/results/{session_id}")

    async def delete_session(self, session_id: str) -> None:
        """Delete a session."""
        await self._request("DELETE", f"/api/grading/sessions/{session_id}")

    async def wait_for_grading(self, session_id: str) -> dict[str, object]:
        """Poll until grading reaches a terminal state and return the results."""
        status = await poll_until(
            lambda: self.get_status(session_id),
            lambda report: is_terminal_status(str(report.get("status"))),
            interval_seconds=self.poll_interval_seconds,
            max_attempts=self.max_poll_attempts,
            sleep=self.sleep,
        )
        if status["status"] == "expired":
            raise SessionExpired(session_id)
        if status["status"] == "error":
            steps = status.get("processingSteps") or []
            errors = [step["error"] for step in steps if step.get("error")]
            raise GradingFailed(
                "Grading failed on the server",
                {"sessionId": session_id, "errors": errors},
            )
        return await self.get_results(session_id)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, object] | None = None,
        timeout: float = 15,
    ) -> dict[str, object]:
        response = await self.http_client.request(
            method,
            f"{self.base_url}{path}",
            json=json,
            headers={"X-API-Key": self.api_key},
            timeout=timeout,
        )
        if response.is_error:
            raise _api_error(response)
        return response.json()


def _api_error(response: httpx.Response) -> GradingApiError:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        error = {}
    return GradingApiError(
        status_code=response.status_code,
        code=str(error.get("code", "HTTP_ERROR")),
        message=str(error.get("message", response.reason_phrase)),
        details=error.get("details") or {},
    )
