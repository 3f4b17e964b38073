"""Tests for the grading HTTP API."""

import time

from fastapi.testclient import TestClient

from nous_grade.api.app import create_app
from tests.conftest import JPEG_DATA_URL, PNG_DATA_URL, FakeStructuredClient, ManualClock

HEADERS = {"X-API-Key": "test-key"}
METADATA = {"userAgent": "Mozilla/5.0", "extensionVersion": "1.2.0"}


def _create_session(client: TestClient) -> str:
    response = client.post(
        "/api/grading/sessions",
        json={"assignmentId": "hw-3", "metadata": METADATA},
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()["sessionId"]


def _upload_both(client: TestClient, session_id: str) -> dict[str, object]:
    first = client.post(
        f"/api/grading/sessions/{session_id}/screenshots",
        json={"type": "student_answer", "imageData": PNG_DATA_URL},
        headers=HEADERS,
    )
    assert first.status_code == 201
    assert first.json()["readyForGrading"] is False
    second = client.post(
        "/api/grading/screenshots",
        json={"sessionId": session_id, "role": "reference", "imageData": JPEG_DATA_URL},
        headers=HEADERS,
    )
    assert second.status_code == 201
    return second.json()


def _poll_status(client: TestClient, session_id: str) -> dict[str, object]:
    for _ in range(100):
        response = client.get(f"/api/grading/status/{session_id}", headers=HEADERS)
        assert response.status_code == 200
        body = response.json()
        if body["terminal"]:
            return body
        time.sleep(0.01)
    raise AssertionError("grading did not finish")


def test_health_is_open(container) -> None:
    client = TestClient(create_app(container))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_key_required(container) -> None:
    client = TestClient(create_app(container))

    missing = client.post("/api/grading/sessions", json={"metadata": METADATA})
    wrong = client.post(
        "/api/grading/sessions",
        json={"metadata": METADATA},
        headers={"X-API-Key": "nope"},
    )
    bearer = client.post(
        "/api/grading/sessions",
        json={"metadata": METADATA},
        headers={"Authorization": "Bearer test-key"},
    )

    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "MISSING_API_KEY"
    assert missing.json()["success"] is False
    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "INVALID_API_KEY"
    assert bearer.status_code == 201


def test_grading_happy_path(container) -> None:
    with TestClient(create_app(container)) as client:
        session_id = _create_session(client)
        upload = _upload_both(client, session_id)
        assert upload["readyForGrading"] is True
        assert upload["sessionStatus"] == "ocr_complete"
        assert upload["ocrResult"]["role"] == "reference"

        response = client.post(
            "/api/grading/grade", json={"sessionId": session_id}, headers=HEADERS
        )
        assert response.status_code == 202
        ticket = response.json()
        assert ticket["estimatedCompletionTimeMs"] == 25000
        assert ticket["status"] == "processing_grading"

        status = _poll_status(client, session_id)
        results = client.get(f"/api/grading/results/{session_id}", headers=HEADERS)

    assert status["status"] == "grading_complete"
    assert status["hasGradingResult"] is True
    assert status["latestStep"] == "grading_complete"
    assert results.status_code == 200
    body = results.json()
    assert body["gradingResult"]["id"] == ticket["gradingId"]
    assert body["gradingResult"]["score"] == 8
    assert body["gradingResult"]["suggestedMessage"].startswith("Nice work")
    assert len(body["ocrResults"]) == 2
    assert body["session"]["assignmentId"] == "hw-3"
    screenshot = body["session"]["screenshots"][0]
    assert screenshot["role"] == "subject"
    assert "imageData" not in screenshot


def test_grading_failure_is_reported_by_polling(
    container, structured_client: FakeStructuredClient
) -> None:
    structured_client.scoring_error = RuntimeError("model overloaded")

    with TestClient(create_app(container)) as client:
        session_id = _create_session(client)
        _upload_both(client, session_id)
        client.post("/api/grading/grade", json={"sessionId": session_id}, headers=HEADERS)
        status = _poll_status(client, session_id)
        results = client.get(
            f"/api/grading/sessions/{session_id}/results", headers=HEADERS
        )

    assert status["status"] == "error"
    assert status["processingSteps"][-1]["step"] == "grading_failed"
    assert status["processingSteps"][-1]["error"] == "model overloaded"
    assert results.json()["gradingResult"] is None


def test_grade_without_reference_is_rejected(container) -> None:
    client = TestClient(create_app(container))
    session_id = _create_session(client)
    client.post(
        f"/api/grading/sessions/{session_id}/screenshots",
        json={"role": "subject", "imageData": PNG_DATA_URL},
        headers=HEADERS,
    )

    response = client.post(
        "/api/grading/grade", json={"sessionId": session_id}, headers=HEADERS
    )
    session = client.get(f"/api/grading/sessions/{session_id}", headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INSUFFICIENT_SCREENSHOTS"
    assert session.json()["status"] == "awaiting_screenshots"


def test_expired_session(container, clock: ManualClock) -> None:
    client = TestClient(create_app(container))
    session_id = _create_session(client)
    clock.advance(minutes=31)

    status = client.get(f"/api/grading/status/{session_id}", headers=HEADERS)
    session = client.get(f"/api/grading/sessions/{session_id}", headers=HEADERS)
    upload = client.post(
        f"/api/grading/sessions/{session_id}/screenshots",
        json={"role": "subject", "imageData": PNG_DATA_URL},
        headers=HEADERS,
    )

    assert status.status_code == 200
    assert status.json()["status"] == "expired"
    assert status.json()["terminal"] is True
    assert session.status_code == 410
    assert session.json()["error"]["code"] == "SESSION_EXPIRED"
    assert upload.status_code == 410


def test_invalid_requests(container) -> None:
    client = TestClient(create_app(container))
    session_id = _create_session(client)

    no_metadata = client.post("/api/grading/sessions", json={}, headers=HEADERS)
    bad_image = client.post(
        f"/api/grading/sessions/{session_id}/screenshots",
        json={"role": "subject", "imageData": "not-an-image"},
        headers=HEADERS,
    )
    bad_role = client.post(
        f"/api/grading/sessions/{session_id}/screenshots",
        json={"role": "teacher", "imageData": PNG_DATA_URL},
        headers=HEADERS,
    )
    bad_id = client.get("/api/grading/sessions/not-a-uuid", headers=HEADERS)

    assert no_metadata.status_code == 400
    assert no_metadata.json()["error"]["code"] == "VALIDATION_ERROR"
    assert no_metadata.json()["error"]["details"]["errors"]
    assert bad_image.status_code == 400
    assert bad_image.json()["error"]["code"] == "INVALID_IMAGE_FORMAT"
    assert bad_role.status_code == 400
    assert bad_id.status_code == 400


def test_delete_session(container) -> None:
    client = TestClient(create_app(container))
    session_id = _create_session(client)

    deleted = client.delete(f"/api/grading/sessions/{session_id}", headers=HEADERS)
    again = client.delete(f"/api/grading/sessions/{session_id}", headers=HEADERS)
    status = client.get(f"/api/grading/status/{session_id}", headers=HEADERS)

    assert deleted.status_code == 200
    assert deleted.json() == {"sessionId": session_id, "deleted": True}
    assert again.status_code == 404
    assert again.json()["error"]["code"] == "SESSION_NOT_FOUND"
    assert status.status_code == 404


def test_responses_carry_request_id(container) -> None:
    client = TestClient(create_app(container))

    echoed = client.get("/health", headers={"X-Request-ID": "req-42"})
    generated = client.get("/health")

    assert echoed.headers["X-Request-ID"] == "req-42"
    assert generated.headers["X-Request-ID"]


def test_grade_in_wrong_state_is_bad_request(container) -> None:
    client = TestClient(create_app(container))
    session_id = _create_session(client)

    response = client.post(
        "/api/grading/grade",
        json={
            "sessionId": session_id,
            "subjectTextOverride": "x = 2",
            "referenceTextOverride": "x = 2",
        },
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_SESSION_STATE"
    assert response.json()["error"]["details"]["currentStatus"] == (
        "awaiting_screenshots"
    )


def test_terminal_status_is_stable_across_polls(container) -> None:
    with TestClient(create_app(container)) as client:
        session_id = _create_session(client)
        _upload_both(client, session_id)
        client.post("/api/grading/grade", json={"sessionId": session_id}, headers=HEADERS)
        first = _poll_status(client, session_id)
        later = [
            client.get(f"/api/grading/status/{session_id}", headers=HEADERS).json()
            for _ in range(3)
        ]

    assert first["status"] == "grading_complete"
    assert all(body == first for body in later)
