from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from reportvault.app.errors import (
    CompanyNotFoundError,
    DeliveryError,
    IntegrityViolationError,
    SessionNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from reportvault.app.services.release import ReportReleaseService
from reportvault.app.services.sessions import VerificationSessionManager
from reportvault.app.utils.hashing import extract_short_checksum
from reportvault.tests.fixtures.report_factory import (
    SAMPLE_CUI,
    FakeClock,
    RecordingMailer,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def release(data_source, generator, storage, mailer, clock):
    return ReportReleaseService(
        data_source=data_source,
        sessions=VerificationSessionManager(ttl=timedelta(minutes=10), clock=clock),
        generator=generator,
        storage=storage,
        mailer=mailer,
        login_start_url="http://localhost:8080/oauth2/start",
    )


# ------------------------------------------------------------------
# End-to-end scenarios
# ------------------------------------------------------------------

def test_verified_session_yields_stored_verified_report(release):
    ticket = release.request_verification(SAMPLE_CUI, 3)

    assert release.complete_login(ticket.session_id, "a@b.com") is True
    assert release.sessions.is_authorized(ticket.session_id) is True

    result = release.download_verified(ticket.session_id)

    assert extract_short_checksum(result.file_name) == result.checksum[:8]
    again = release.storage.retrieve_and_verify(result.file_name)
    assert again.pdf_bytes == result.pdf_bytes
    # The session is single use.
    assert release.sessions.get_session(ticket.session_id) is None


def test_mismatched_identity_permits_no_generation(release, storage):
    ticket = release.request_verification(SAMPLE_CUI, 3, requested_identity="x@y.com")

    assert release.complete_login(ticket.session_id, "z@y.com") is False
    assert release.sessions.is_authorized(ticket.session_id) is False

    with pytest.raises(UnauthorizedError):
        release.download_verified(ticket.session_id)
    assert storage.stats().file_count == 0


def test_tampered_stored_report_is_never_served(release):
    ticket = release.request_verification(SAMPLE_CUI, 3)
    release.complete_login(ticket.session_id, "a@b.com")
    result = release.download_verified(ticket.session_id)

    path = release.storage.root / "2024" / "09" / result.file_name
    path.chmod(0o644)
    data = bytearray(path.read_bytes())
    data[len(data) // 2] ^= 0xFF
    path.write_bytes(bytes(data))

    with pytest.raises(IntegrityViolationError):
        release.storage.retrieve_and_verify(result.file_name)


# ------------------------------------------------------------------
# Verification handshake
# ------------------------------------------------------------------

def test_request_verification_returns_login_url(release):
    ticket = release.request_verification(SAMPLE_CUI, 3)

    url = urlparse(ticket.auth_url)
    assert url.path == "/oauth2/start"
    assert parse_qs(url.query)["sessionId"] == [ticket.session_id]


def test_request_verification_for_unknown_company(release):
    with pytest.raises(CompanyNotFoundError):
        release.request_verification("99999999", 3)


@pytest.mark.parametrize("cui, years", [("12AB", 3), ("1", 3), (SAMPLE_CUI, 0), (SAMPLE_CUI, 11)])
def test_request_verification_validates_input(release, cui, years):
    with pytest.raises(ValidationError):
        release.request_verification(cui, years)


def test_session_status_reflects_binding(release):
    ticket = release.request_verification(SAMPLE_CUI, 3, requested_identity="x@y.com")

    before = release.session_status(ticket.session_id)
    release.complete_login(ticket.session_id, "X@Y.com")
    after = release.session_status(ticket.session_id)

    assert before.verified is False and before.authorized is False
    assert after.verified is True and after.identity_matches is True
    assert after.authorized is True


def test_session_status_for_expired_session(release, clock):
    ticket = release.request_verification(SAMPLE_CUI, 3)
    clock.advance(minutes=11)

    with pytest.raises(SessionNotFoundError):
        release.session_status(ticket.session_id)


# ------------------------------------------------------------------
# Email release
# ------------------------------------------------------------------

@pytest.mark.anyio
async def test_release_verified_emails_stored_report(release, mailer):
    ticket = release.request_verification(SAMPLE_CUI, 3)
    release.complete_login(ticket.session_id, "a@b.com")

    receipt = await release.release_verified(ticket.session_id)

    assert receipt.message_id == "msg-1"
    recipient, company, artifact, request_id = mailer.sent[0]
    assert recipient == "a@b.com"
    assert company.cui == SAMPLE_CUI
    assert artifact.file_name == receipt.file_name
    assert artifact.pdf_bytes == release.storage.retrieve_and_verify(receipt.file_name).pdf_bytes
    assert request_id == receipt.request_id
    assert release.sessions.get_session(ticket.session_id) is None


@pytest.mark.anyio
async def test_release_requires_verified_session(release, mailer):
    ticket = release.request_verification(SAMPLE_CUI, 3)

    with pytest.raises(UnauthorizedError):
        await release.release_verified(ticket.session_id)
    assert mailer.sent == []


@pytest.mark.anyio
async def test_failed_delivery_keeps_session_for_retry(release):
    release._mailer = RecordingMailer(fail=True)
    ticket = release.request_verification(SAMPLE_CUI, 3)
    release.complete_login(ticket.session_id, "a@b.com")

    with pytest.raises(DeliveryError):
        await release.release_verified(ticket.session_id)

    assert release.sessions.is_authorized(ticket.session_id) is True


@pytest.mark.anyio
async def test_session_cannot_be_released_twice_concurrently(release):
    ticket = release.request_verification(SAMPLE_CUI, 3)
    release.complete_login(ticket.session_id, "a@b.com")
    competing = []

    class CompetingMailer(RecordingMailer):
        async def send_report(self, **kwargs):
            # A second release of the same session while this one is in flight.
            try:
                release.download_verified(ticket.session_id)
            except UnauthorizedError:
                competing.append("refused")
            else:
                competing.append("released")
            return await super().send_report(**kwargs)

    release._mailer = CompetingMailer()

    await release.release_verified(ticket.session_id)

    assert competing == ["refused"]
    assert len(release._mailer.sent) == 1
    assert release.sessions.get_session(ticket.session_id) is None


@pytest.mark.anyio
async def test_failed_delivery_hands_the_claim_back(release, mailer):
    release._mailer = RecordingMailer(fail=True)
    ticket = release.request_verification(SAMPLE_CUI, 3)
    release.complete_login(ticket.session_id, "a@b.com")

    with pytest.raises(DeliveryError):
        await release.release_verified(ticket.session_id)

    release._mailer = mailer
    receipt = await release.release_verified(ticket.session_id)

    assert receipt.message_id == "msg-1"
    assert release.sessions.get_session(ticket.session_id) is None
