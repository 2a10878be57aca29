"""
Identity verification endpoints.

The login itself is performed by an authenticating proxy in front of
this service. These routes only:

- open a verification session for a company report
- hand the session id to the login flow (``state`` parameter plus an
  ``oauth_session`` cookie as a side channel)
- bind the identity the proxy asserts once the login completed
- release the report to the verified identity
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from reportvault.app.config import Settings
from reportvault.app.errors import UnauthorizedError
from reportvault.app.api.dependencies import get_app_settings, get_release_service
from reportvault.app.services.release import ReportReleaseService

logger = logging.getLogger(__name__)

SESSION_COOKIE = "oauth_session"

router = APIRouter()
oauth_router = APIRouter()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class VerificationRequestResponse(BaseModel):
    sessionId: str
    authUrl: str
    message: str
    requestId: str


class SessionStatusResponse(BaseModel):
    sessionId: str
    cui: str
    years: int
    verified: bool
    identityMatches: bool
    authorized: bool
    expiresAt: datetime


class SendVerifiedResponse(BaseModel):
    message: str
    requestId: str
    fileName: str
    messageId: str


# ---------------------------------------------------------------------------
# POST /api/email/request-verification
# ---------------------------------------------------------------------------


@router.post(
    "/request-verification",
    response_model=VerificationRequestResponse,
    summary="Open a verification session for a company report",
)
def request_verification(
    cui: str = Query(..., description="Business identifier (2-10 digits)"),
    years: int = Query(default=3, description="Number of reporting years (1-10)"),
    email: Optional[str] = Query(
        default=None,
        description="Recipient the login must match; any login when omitted",
    ),
    release: ReportReleaseService = Depends(get_release_service),
) -> VerificationRequestResponse:
    ticket = release.request_verification(cui, years, email)
    return VerificationRequestResponse(
        sessionId=ticket.session_id,
        authUrl=ticket.auth_url,
        message="Please complete email verification through the login provider",
        requestId=ticket.request_id,
    )


# ---------------------------------------------------------------------------
# GET /api/email/session/{session_id}
# ---------------------------------------------------------------------------


@router.get(
    "/session/{session_id}",
    response_model=SessionStatusResponse,
    summary="Inspect a verification session",
)
def get_session_status(
    session_id: str,
    release: ReportReleaseService = Depends(get_release_service),
) -> SessionStatusResponse:
    session = release.session_status(session_id)
    return SessionStatusResponse(
        sessionId=session.session_id,
        cui=session.cui,
        years=session.years,
        verified=session.verified,
        identityMatches=session.identity_matches,
        authorized=session.authorized,
        expiresAt=session.expires_at,
    )


# ---------------------------------------------------------------------------
# POST /api/email/send-verified
# ---------------------------------------------------------------------------


@router.post(
    "/send-verified",
    response_model=SendVerifiedResponse,
    summary="Email the report to the verified identity",
)
async def send_verified(
    sessionId: str = Query(...),
    release: ReportReleaseService = Depends(get_release_service),
) -> SendVerifiedResponse:
    receipt = await release.release_verified(sessionId)
    return SendVerifiedResponse(
        message="Email sent successfully with verified PDF",
        requestId=receipt.request_id,
        fileName=receipt.file_name,
        messageId=receipt.message_id,
    )


# ---------------------------------------------------------------------------
# Login hand-off
# ---------------------------------------------------------------------------


@oauth_router.get("/start", summary="Start the login flow for a session")
def start_login(
    sessionId: str = Query(...),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    logger.info("Starting login flow with session %s", sessionId)

    target = f"{settings.login_authorization_url}?{urlencode({'state': sessionId})}"
    response = RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        SESSION_COOKIE,
        sessionId,
        max_age=settings.session_ttl_minutes * 60,
        path="/",
        httponly=True,
        samesite="lax",
    )
    return response


@oauth_router.get("/complete", summary="Bind the logged-in identity to a session")
def complete_login(
    request: Request,
    state: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_app_settings),
    release: ReportReleaseService = Depends(get_release_service),
) -> JSONResponse:
    session_id = state or request.cookies.get(SESSION_COOKIE)
    identity = request.headers.get(settings.identity_header, "").strip()

    if not session_id or not identity:
        logger.warning(
            "Login completion without session or identity (session present: %s)",
            bool(session_id),
        )
        raise UnauthorizedError()

    matched = release.complete_login(session_id, identity)

    response = JSONResponse(
        status_code=status.HTTP_200_OK if matched else status.HTTP_403_FORBIDDEN,
        content={
            "sessionId": session_id,
            "verified": matched,
            "message": (
                "Email verified, the report can now be sent"
                if matched
                else "Verification failed for this session"
            ),
        },
    )
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response
