"""
FastAPI entrypoint for the report service.

Collaborators are wired once per application instance and stored on
``app.state``. Configuration is loaded once and treated as immutable for
the lifetime of the process.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reportvault.app.api.documents import router as documents_router
from reportvault.app.api.verification import oauth_router
from reportvault.app.api.verification import router as verification_router
from reportvault.app.config import Settings, get_settings
from reportvault.app.errors import (
    DeliveryError,
    GenerationError,
    IntegrityViolationError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from reportvault.app.services.datasource import (
    CompanyDataSource,
    InMemoryCompanyDataSource,
)
from reportvault.app.services.delivery import PostmarkMailer, ReportMailer
from reportvault.app.services.generator import ReportGenerator
from reportvault.app.services.release import ReportReleaseService
from reportvault.app.services.sessions import VerificationSessionManager
from reportvault.app.services.signing import ReportSigner
from reportvault.app.services.storage import ReportStorage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(UnauthorizedError)
    async def handle_unauthorized(request: Request, exc: UnauthorizedError):
        return _error(401, str(exc))

    @app.exception_handler(IntegrityViolationError)
    async def handle_integrity(request: Request, exc: IntegrityViolationError):
        logger.error(
            "SECURITY VIOLATION on %s %s: %s",
            request.method,
            request.url.path,
            exc.file_name,
        )
        return _error(
            500, "PDF integrity verification failed - security violation detected"
        )

    @app.exception_handler(GenerationError)
    async def handle_generation(request: Request, exc: GenerationError):
        return _error(500, str(exc))

    @app.exception_handler(StorageError)
    async def handle_storage(request: Request, exc: StorageError):
        return _error(500, str(exc))

    @app.exception_handler(DeliveryError)
    async def handle_delivery(request: Request, exc: DeliveryError):
        return _error(502, str(exc))


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    data_source: Optional[CompanyDataSource] = None,
    mailer: Optional[ReportMailer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    data_source = data_source if data_source is not None else InMemoryCompanyDataSource()

    signer = ReportSigner(settings.signature_secret)
    storage = ReportStorage(
        root=settings.storage_path,
        signer=signer,
        enabled=settings.storage_enabled,
    )
    sessions = VerificationSessionManager(
        ttl=timedelta(minutes=settings.session_ttl_minutes),
        allow_rebind=settings.allow_session_rebind,
    )
    generator = ReportGenerator(
        data_source=data_source,
        signer=signer,
        version=settings.report_version,
        watermark=settings.watermark_text,
    )
    if mailer is None:
        mailer = PostmarkMailer(
            api_url=str(settings.postmark_api_url),
            api_token=settings.postmark_api_token,
            from_email=settings.postmark_from_email,
            from_name=settings.postmark_from_name,
        )

    base_url = str(settings.public_base_url).rstrip("/")
    release = ReportReleaseService(
        data_source=data_source,
        sessions=sessions,
        generator=generator,
        storage=storage,
        mailer=mailer,
        login_start_url=f"{base_url}/oauth2/start",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if storage.enabled:
            storage.root.mkdir(parents=True, exist_ok=True)
            logger.info("PDF storage initialized at: %s", storage.root.resolve())
        else:
            logger.info("PDF storage is disabled")
        yield
        sessions.clear()

    app = FastAPI(
        title="reportvault",
        description="Tamper-evident company report generation and verification",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.signer = signer
    app.state.storage = storage
    app.state.sessions = sessions
    app.state.release = release

    app.include_router(verification_router, prefix="/api/email")
    app.include_router(oauth_router, prefix="/oauth2")
    app.include_router(documents_router, prefix="/api/pdf")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    @app.get("/healthz", summary="Liveness probe")
    def healthz() -> dict:
        return {"status": "ok"}

    return app
