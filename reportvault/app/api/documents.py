"""
Report retrieval and verification endpoints.

Every PDF served here is a storage read-back that passed the integrity
check. Responses carry the first 16 hex characters of the artifact
checksum in ``X-PDF-Checksum``.
"""

import logging
from datetime import datetime
from typing import List, Optional

import anyio.to_thread
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from reportvault.app.config import Settings
from reportvault.app.api.dependencies import (
    get_app_settings,
    get_release_service,
    get_signer,
    get_storage,
)
from reportvault.app.schemas.artifacts import StorageResult
from reportvault.app.services.release import ReportReleaseService
from reportvault.app.services.signing import ReportSigner
from reportvault.app.services.storage import ReportStorage
from reportvault.app.services.verification import verify_document

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class StoredReportItem(BaseModel):
    fileName: str
    size: int
    sizeFormatted: str
    generatedAt: datetime


class StorageStatsResponse(BaseModel):
    fileCount: int
    totalSize: int
    totalSizeFormatted: str
    enabled: bool


class VerifyResponse(BaseModel):
    status: str
    valid: bool
    reason: str
    textHash: Optional[str] = None


def _pdf_response(result: StorageResult, disposition: str) -> Response:
    return Response(
        content=result.pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'{disposition}; filename="{result.file_name}"',
            "X-PDF-Checksum": result.checksum_hint,
        },
    )


# ---------------------------------------------------------------------------
# GET /api/pdf/session/{session_id}
# ---------------------------------------------------------------------------


@router.get(
    "/session/{session_id}",
    summary="Download a freshly generated report for a verified session",
)
def download_for_session(
    session_id: str,
    release: ReportReleaseService = Depends(get_release_service),
) -> Response:
    result = release.download_verified(session_id)
    return _pdf_response(result, "attachment")


# ---------------------------------------------------------------------------
# GET /api/pdf/company/{cui}/stored
# ---------------------------------------------------------------------------


@router.get(
    "/company/{cui}/stored",
    response_model=List[StoredReportItem],
    summary="List stored reports for a company",
)
def list_stored_reports(
    cui: str,
    storage: ReportStorage = Depends(get_storage),
) -> List[StoredReportItem]:
    return [
        StoredReportItem(
            fileName=info.file_name,
            size=info.size,
            sizeFormatted=info.size_formatted,
            generatedAt=info.generated_at,
        )
        for info in storage.list_for_subject(cui)
    ]


# ---------------------------------------------------------------------------
# GET /api/pdf/download/{file_name}
# ---------------------------------------------------------------------------


@router.get(
    "/download/{file_name}",
    summary="Download a stored report after verifying its integrity",
)
def download_stored_report(
    file_name: str,
    storage: ReportStorage = Depends(get_storage),
) -> Response:
    result = storage.retrieve_and_verify(file_name)
    logger.info("Serving verified stored PDF: %s", file_name)
    return _pdf_response(result, "attachment")


# ---------------------------------------------------------------------------
# POST /api/pdf/verify
# ---------------------------------------------------------------------------


@router.post(
    "/verify",
    response_model=VerifyResponse,
    summary="Verify the embedded signature of a report",
)
async def verify_uploaded_report(
    file: UploadFile = File(..., description="Report PDF to verify"),
    settings: Settings = Depends(get_app_settings),
    signer: ReportSigner = Depends(get_signer),
) -> VerifyResponse:
    try:
        pdf_bytes = await file.read()
    except OSError as exc:
        raise HTTPException(
            status_code=400,
            detail="Failed to read uploaded PDF",
        ) from exc

    if not pdf_bytes:
        raise HTTPException(status_code=400, detail="Uploaded PDF is empty")

    max_size_bytes = settings.max_upload_size_mb * 1024 * 1024
    if len(pdf_bytes) > max_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=(
                f"PDF exceeds maximum allowed size of "
                f"{settings.max_upload_size_mb} MB"
            ),
        )

    # pikepdf and pypdf parsing is blocking and CPU-bound.
    result = await anyio.to_thread.run_sync(verify_document, pdf_bytes, signer)
    return VerifyResponse(
        status=result.status.value,
        valid=result.is_valid,
        reason=result.reason,
        textHash=result.text_hash,
    )


# ---------------------------------------------------------------------------
# GET /api/pdf/storage/stats
# ---------------------------------------------------------------------------


@router.get(
    "/storage/stats",
    response_model=StorageStatsResponse,
    summary="Report storage statistics",
)
def storage_stats(
    storage: ReportStorage = Depends(get_storage),
) -> StorageStatsResponse:
    stats = storage.stats()
    return StorageStatsResponse(
        fileCount=stats.file_count,
        totalSize=stats.total_size,
        totalSizeFormatted=stats.total_size_formatted,
        enabled=stats.enabled,
    )
