"""
Transport objects for generated, stored and verified report artifacts.

These are plain value objects. None of them performs I/O; ownership of
the bytes they carry stays with the component that produced them.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


def format_size(size: int) -> str:
    """Render a byte count for humans (``B``/``KB``/``MB``/``GB``)."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class DocumentArtifact(BaseModel):
    """
    A freshly generated, signed report.

    ``checksum`` covers ``pdf_bytes`` exactly as returned. It is distinct
    from the text hash embedded inside the document.
    """

    pdf_bytes: bytes
    file_name: str
    checksum: str
    size: int
    timestamp: datetime
    version: str
    request_id: str

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageResult(BaseModel):
    """
    Verified read-back of a stored artifact.

    This is the single source of truth handed to every delivery path.
    """

    full_path: str
    file_name: str
    checksum: str
    size: int
    pdf_bytes: bytes

    model_config = ConfigDict(frozen=True)

    @property
    def checksum_hint(self) -> str:
        """Client-visible integrity hint (first 16 hex characters)."""
        return self.checksum[:16]


class StoredArtifactInfo(BaseModel):
    file_name: str
    size: int
    generated_at: datetime

    model_config = ConfigDict(frozen=True)

    @property
    def size_formatted(self) -> str:
        return format_size(self.size)


class StorageStats(BaseModel):
    file_count: int
    total_size: int
    enabled: bool

    model_config = ConfigDict(frozen=True)

    @property
    def total_size_formatted(self) -> str:
        return format_size(self.total_size)


# ---------------------------------------------------------------------------
# Independent verification
# ---------------------------------------------------------------------------

class VerificationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNRECOGNIZED = "unrecognized"


class EmbeddedSignature(BaseModel):
    """Signature metadata as found inside a document."""

    signature: Optional[str] = None
    algorithm: Optional[str] = None
    text_hash: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SignatureVerificationResult(BaseModel):
    status: VerificationStatus
    reason: str
    text_hash: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_valid(self) -> bool:
        return self.status is VerificationStatus.VALID
