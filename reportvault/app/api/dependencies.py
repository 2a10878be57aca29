"""
Request-scoped access to the services wired at application startup.

All collaborators live on ``app.state``; route modules never construct
services themselves.
"""

from fastapi import Request

from reportvault.app.config import Settings
from reportvault.app.services.release import ReportReleaseService
from reportvault.app.services.signing import ReportSigner
from reportvault.app.services.storage import ReportStorage


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_release_service(request: Request) -> ReportReleaseService:
    return request.app.state.release


def get_storage(request: Request) -> ReportStorage:
    return request.app.state.storage


def get_signer(request: Request) -> ReportSigner:
    return request.app.state.signer
