"""
Release orchestration.

Ties the verification session gate to the document pipeline::

    request_verification -> (external login) -> complete_login
        -> release_verified | download_verified
            -> claim -> generate -> store -> read back -> deliver
            -> remove session (or hand the claim back on failure)

Every delivery path hands out the storage read-back, never the bytes the
generator produced in memory. A claimed session cannot be released twice
concurrently. It is removed only after the delivery succeeded, so a
failed send can be retried within the TTL.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

import anyio.to_thread
from pydantic import BaseModel, ConfigDict

from reportvault.app.errors import (
    CompanyNotFoundError,
    GenerationError,
    SessionNotFoundError,
    ValidationError,
)
from reportvault.app.schemas.artifacts import StorageResult
from reportvault.app.schemas.company import CUI_PATTERN, CompanyRecord
from reportvault.app.services.datasource import CompanyDataSource
from reportvault.app.services.delivery import ReportMailer
from reportvault.app.services.generator import (
    MAX_REPORT_YEARS,
    MIN_REPORT_YEARS,
    ReportGenerator,
)
from reportvault.app.services.sessions import VerificationSessionManager
from reportvault.app.services.storage import ReportStorage
from reportvault.app.utils.hashing import calculate_checksum


logger = logging.getLogger(__name__)

_CUI_RE = re.compile(CUI_PATTERN)


class VerificationTicket(BaseModel):
    session_id: str
    auth_url: str
    request_id: str

    model_config = ConfigDict(frozen=True)


class SessionStatus(BaseModel):
    session_id: str
    cui: str
    years: int
    verified: bool
    identity_matches: bool
    authorized: bool
    expires_at: datetime

    model_config = ConfigDict(frozen=True)


class ReleaseReceipt(BaseModel):
    request_id: str
    file_name: str
    checksum: str
    message_id: str

    model_config = ConfigDict(frozen=True)


class ReportReleaseService:
    def __init__(
        self,
        *,
        data_source: CompanyDataSource,
        sessions: VerificationSessionManager,
        generator: ReportGenerator,
        storage: ReportStorage,
        mailer: ReportMailer,
        login_start_url: str,
    ):
        self._data_source = data_source
        self._sessions = sessions
        self._generator = generator
        self._storage = storage
        self._mailer = mailer
        self._login_start_url = login_start_url

    @property
    def sessions(self) -> VerificationSessionManager:
        return self._sessions

    @property
    def storage(self) -> ReportStorage:
        return self._storage

    # ------------------------------------------------------------------
    # Verification handshake
    # ------------------------------------------------------------------

    def request_verification(
        self,
        cui: str,
        years: int,
        requested_identity: Optional[str] = None,
    ) -> VerificationTicket:
        request_id = str(uuid.uuid4())

        if not _CUI_RE.match(cui or ""):
            raise ValidationError("CUI must be 2-10 digits")
        if not MIN_REPORT_YEARS <= years <= MAX_REPORT_YEARS:
            raise ValidationError(
                f"years must be between {MIN_REPORT_YEARS} and {MAX_REPORT_YEARS}"
            )

        logger.info(
            "Email verification request received: CUI=%s, years=%s [RequestID: %s]",
            cui,
            years,
            request_id,
        )

        if self._data_source.get_company(cui) is None:
            logger.warning("Company not found for CUI: %s [RequestID: %s]", cui, request_id)
            raise CompanyNotFoundError(cui)

        session_id = self._sessions.initiate(cui, years, requested_identity)
        auth_url = f"{self._login_start_url}?{urlencode({'sessionId': session_id})}"

        logger.info(
            "Verification session created: sessionId=%s [RequestID: %s]",
            session_id,
            request_id,
        )
        return VerificationTicket(
            session_id=session_id, auth_url=auth_url, request_id=request_id
        )

    def complete_login(self, session_id: str, identity: str) -> bool:
        return self._sessions.bind(session_id, identity)

    def session_status(self, session_id: str) -> SessionStatus:
        session = self._sessions.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        return SessionStatus(
            session_id=session.session_id,
            cui=session.cui,
            years=session.years,
            verified=session.verified,
            identity_matches=session.verified and session.identity_matches,
            authorized=self._sessions.is_authorized(session_id),
            expires_at=session.expires_at,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_and_store(
        self,
        company: CompanyRecord,
        cui: str,
        years: int,
        request_id: Optional[str] = None,
    ) -> StorageResult:
        """
        Generate, persist and read back a report.

        With storage disabled nothing is persisted and the generated bytes
        are returned as-is after the checksum self-check.
        """
        request_id = request_id or str(uuid.uuid4())
        artifact = self._generator.generate(company, cui, years, request_id=request_id)

        recalculated = calculate_checksum(artifact.pdf_bytes)
        if recalculated != artifact.checksum:
            logger.error(
                "CRITICAL: PDF checksum mismatch during generation! "
                "Expected: %s, Calculated: %s [RequestID: %s]",
                artifact.checksum,
                recalculated,
                request_id,
            )
            raise GenerationError("PDF integrity verification failed during generation")

        file_name = self._storage.store(
            artifact.pdf_bytes,
            cui,
            artifact.timestamp,
            artifact.checksum,
            artifact.version,
        )

        if not self._storage.enabled:
            return StorageResult(
                full_path="",
                file_name=file_name,
                checksum=artifact.checksum,
                size=artifact.size,
                pdf_bytes=artifact.pdf_bytes,
            )

        stored = self._storage.retrieve_and_verify(file_name)
        logger.info(
            "PDF integrity verified after storage: %s (size: %s bytes) [RequestID: %s]",
            file_name,
            stored.size,
            request_id,
        )
        return stored

    def _load_company(self, cui: str) -> CompanyRecord:
        company = self._data_source.get_company(cui)
        if company is None:
            raise CompanyNotFoundError(cui)
        return company

    # ------------------------------------------------------------------
    # Gated delivery
    # ------------------------------------------------------------------

    async def release_verified(self, session_id: str) -> ReleaseReceipt:
        """Email a freshly generated report to the session's verified identity."""
        request_id = str(uuid.uuid4())
        snapshot = self._sessions.claim(session_id)

        logger.info(
            "Verified email send request: sessionId=%s [RequestID: %s]",
            session_id,
            request_id,
        )

        delivered = False
        try:
            company = self._load_company(snapshot.cui)
            stored = await anyio.to_thread.run_sync(
                self.generate_and_store,
                company,
                snapshot.cui,
                snapshot.years,
                request_id,
            )

            message_id = await self._mailer.send_report(
                recipient=snapshot.verified_identity,
                company=company,
                artifact=stored,
                request_id=request_id,
            )
            delivered = True
        finally:
            self._settle_claim(session_id, delivered)

        logger.info(
            "Email sent successfully to %s for CUI %s with verified PDF %s [RequestID: %s]",
            snapshot.verified_identity,
            snapshot.cui,
            stored.file_name,
            request_id,
        )
        return ReleaseReceipt(
            request_id=request_id,
            file_name=stored.file_name,
            checksum=stored.checksum,
            message_id=message_id,
        )

    def download_verified(self, session_id: str) -> StorageResult:
        """Generate a report for an authorized session and return it for download."""
        request_id = str(uuid.uuid4())
        snapshot = self._sessions.claim(session_id)

        delivered = False
        try:
            company = self._load_company(snapshot.cui)
            stored = self.generate_and_store(
                company, snapshot.cui, snapshot.years, request_id
            )
            delivered = True
        finally:
            self._settle_claim(session_id, delivered)

        return stored

    def _settle_claim(self, session_id: str, delivered: bool) -> None:
        if delivered:
            self._sessions.remove(session_id)
        else:
            self._sessions.release_claim(session_id)
