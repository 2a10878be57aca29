import asyncio
import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from reportvault.app.main import create_app
from reportvault.app.services.verification import verify_document
from reportvault.tests.fixtures.report_factory import (
    SAMPLE_CUI,
    RecordingMailer,
    make_settings,
    sample_data_source,
)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(tmp_path, mailer):
    app = create_app(
        settings=make_settings(tmp_path / "pdf-storage"),
        data_source=sample_data_source(),
        mailer=mailer,
    )
    with TestClient(app) as client:
        yield client


def _verified_session(client, email="a@b.com", requested=None):
    params = {"cui": SAMPLE_CUI, "years": 3}
    if requested:
        params["email"] = requested
    response = client.post("/api/email/request-verification", params=params)
    assert response.status_code == 200
    session_id = response.json()["sessionId"]

    response = client.get(
        "/oauth2/complete",
        params={"state": session_id},
        headers={"X-Auth-Request-Email": email},
    )
    return session_id, response


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


# ------------------------------------------------------------------
# Verification handshake
# ------------------------------------------------------------------

def test_request_verification(client):
    response = client.post(
        "/api/email/request-verification", params={"cui": SAMPLE_CUI, "years": 3}
    )

    body = response.json()
    assert response.status_code == 200
    assert body["authUrl"] == (
        f"http://localhost:8080/oauth2/start?sessionId={body['sessionId']}"
    )
    assert body["requestId"]


def test_request_verification_unknown_company(client):
    response = client.post(
        "/api/email/request-verification", params={"cui": "99999999", "years": 3}
    )

    assert response.status_code == 404


def test_request_verification_invalid_cui(client):
    response = client.post(
        "/api/email/request-verification", params={"cui": "12AB", "years": 3}
    )

    assert response.status_code == 400


def test_login_start_sets_cookie_and_redirects_with_state(client):
    response = client.get(
        "/oauth2/start", params={"sessionId": "abc"}, follow_redirects=False
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/oauth2/authorization/google?state=abc"
    assert "oauth_session=abc" in response.headers["set-cookie"]
    assert "HttpOnly" in response.headers["set-cookie"]


def test_login_completion_via_cookie(client):
    response = client.post(
        "/api/email/request-verification", params={"cui": SAMPLE_CUI, "years": 3}
    )
    session_id = response.json()["sessionId"]

    client.get("/oauth2/start", params={"sessionId": session_id}, follow_redirects=False)
    response = client.get(
        "/oauth2/complete", headers={"X-Auth-Request-Email": "a@b.com"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "sessionId": session_id,
        "verified": True,
        "message": "Email verified, the report can now be sent",
    }


def test_login_completion_without_identity_is_unauthorized(client):
    response = client.get("/oauth2/complete", params={"state": "abc"})

    assert response.status_code == 401


def test_login_with_wrong_identity_is_forbidden(client):
    session_id, response = _verified_session(
        client, email="z@y.com", requested="x@y.com"
    )

    assert response.status_code == 403
    status = client.get(f"/api/email/session/{session_id}").json()
    assert status["verified"] is True
    assert status["authorized"] is False


def test_unknown_session_status_is_not_found(client):
    response = client.get("/api/email/session/00000000-0000-0000-0000-000000000000")

    assert response.status_code == 404


# ------------------------------------------------------------------
# Gated release
# ------------------------------------------------------------------

def test_send_verified_requires_verification(client, mailer):
    response = client.post(
        "/api/email/request-verification", params={"cui": SAMPLE_CUI, "years": 3}
    )

    response = client.post(
        "/api/email/send-verified", params={"sessionId": response.json()["sessionId"]}
    )

    assert response.status_code == 401
    assert response.json() == {"detail": "Session not verified or expired"}
    assert mailer.sent == []


def test_send_verified_emails_report(client, mailer):
    session_id, _ = _verified_session(client)

    response = client.post("/api/email/send-verified", params={"sessionId": session_id})

    body = response.json()
    assert response.status_code == 200
    assert body["messageId"] == "msg-1"
    assert mailer.sent[0][0] == "a@b.com"
    assert mailer.sent[0][2].file_name == body["fileName"]

    # Session was consumed.
    again = client.post("/api/email/send-verified", params={"sessionId": session_id})
    assert again.status_code == 401


def test_session_download_then_stored_download_and_verify(client):
    session_id, _ = _verified_session(client)

    response = client.get(f"/api/pdf/session/{session_id}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    checksum_hint = response.headers["x-pdf-checksum"]
    assert len(checksum_hint) == 16
    pdf_bytes = response.content

    listing = client.get(f"/api/pdf/company/{SAMPLE_CUI}/stored").json()
    assert len(listing) == 1
    file_name = listing[0]["fileName"]
    assert file_name.endswith(f"_{checksum_hint[:8]}.pdf")

    stored = client.get(f"/api/pdf/download/{file_name}")
    assert stored.status_code == 200
    assert stored.content == pdf_bytes

    verified = client.post(
        "/api/pdf/verify",
        files={"file": ("report.pdf", pdf_bytes, "application/pdf")},
    )
    assert verified.json()["status"] == "valid"
    assert verified.json()["valid"] is True

    stats = client.get("/api/pdf/storage/stats").json()
    assert stats["fileCount"] == 1
    assert stats["enabled"] is True


def test_tampered_download_reports_security_violation(client, tmp_path):
    session_id, _ = _verified_session(client)
    client.get(f"/api/pdf/session/{session_id}")
    file_name = client.get(f"/api/pdf/company/{SAMPLE_CUI}/stored").json()[0]["fileName"]

    path = next((tmp_path / "pdf-storage").rglob(file_name))
    os.chmod(path, 0o644)
    data = bytearray(path.read_bytes())
    data[-20] ^= 0x01
    path.write_bytes(bytes(data))

    response = client.get(f"/api/pdf/download/{file_name}")

    assert response.status_code == 500
    assert "security violation" in response.json()["detail"]


def test_download_with_malformed_name_is_bad_request(client):
    assert client.get("/api/pdf/download/report.pdf").status_code == 400


def test_download_of_missing_report_is_not_found(client):
    response = client.get(f"/api/pdf/download/{SAMPLE_CUI}_20240101_000000_v1.0_abcdef01.pdf")

    assert response.status_code == 404


def test_verify_rejects_garbage_as_unrecognized(client):
    response = client.post(
        "/api/pdf/verify",
        files={"file": ("x.pdf", b"not a pdf", "application/pdf")},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "unrecognized"


def test_verify_rejects_empty_upload(client):
    response = client.post(
        "/api/pdf/verify",
        files={"file": ("x.pdf", b"", "application/pdf")},
    )

    assert response.status_code == 400


def test_verify_runs_outside_the_event_loop(client):
    session_id, _ = _verified_session(client)
    pdf_bytes = client.get(f"/api/pdf/session/{session_id}").content
    seen = []

    def recording_verify(data, signer):
        try:
            asyncio.get_running_loop()
            seen.append("event loop")
        except RuntimeError:
            seen.append("worker thread")
        return verify_document(data, signer)

    with patch(
        "reportvault.app.api.documents.verify_document", new=recording_verify
    ):
        response = client.post(
            "/api/pdf/verify",
            files={"file": ("report.pdf", pdf_bytes, "application/pdf")},
        )

    assert response.status_code == 200
    assert response.json()["status"] == "valid"
    assert seen == ["worker thread"]
