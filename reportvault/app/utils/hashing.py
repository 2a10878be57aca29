"""
Checksum and artifact naming primitives.

This module hashes bytes, and bytes only. It also owns the artifact
file name grammar, because the trailing name segment *is* a checksum
prefix and both directions (derive, extract) must agree.

File name grammar::

    {cui}_{yyyyMMdd_HHmmss}_v{version}_{checksum8}.pdf

The last underscore-delimited segment is always the first eight hex
characters of the SHA-256 checksum of the stored bytes.
"""

import hashlib
from datetime import datetime
from typing import Optional, Union

from reportvault.app.errors import InvalidNameFormatError


REPORT_EXTENSION = ".pdf"
SHORT_CHECKSUM_LENGTH = 8
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Minimum number of underscore-delimited segments a valid name splits into.
_MIN_NAME_SEGMENTS = 4


def calculate_checksum(data: Union[bytes, bytearray]) -> str:
    """Return the lowercase hex SHA-256 digest of ``data``."""
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(
            "calculate_checksum expects bytes, "
            f"got {type(data).__name__}"
        )
    return hashlib.sha256(data).hexdigest()


def generate_file_name(
    *,
    cui: str,
    timestamp: datetime,
    version: str,
    checksum: str,
) -> str:
    """Derive the deterministic artifact file name."""
    if len(checksum) < SHORT_CHECKSUM_LENGTH:
        raise ValueError(f"Checksum too short for naming: {checksum!r}")

    timestamp_str = timestamp.strftime(TIMESTAMP_FORMAT)
    short_checksum = checksum[:SHORT_CHECKSUM_LENGTH]
    return f"{cui}_{timestamp_str}_v{version}_{short_checksum}{REPORT_EXTENSION}"


def _name_segments(file_name: str) -> list:
    stem = file_name
    if stem.endswith(REPORT_EXTENSION):
        stem = stem[: -len(REPORT_EXTENSION)]
    return stem.split("_")


def extract_short_checksum(file_name: str) -> str:
    """
    Return the checksum prefix encoded in an artifact file name.

    Raises:
        InvalidNameFormatError:
            If the name has fewer than four underscore-delimited segments
            or its last segment is not an 8-character hex string.
    """
    parts = _name_segments(file_name)
    if len(parts) < _MIN_NAME_SEGMENTS:
        raise InvalidNameFormatError(file_name)

    short_checksum = parts[-1].lower()
    if len(short_checksum) != SHORT_CHECKSUM_LENGTH or any(
        c not in "0123456789abcdef" for c in short_checksum
    ):
        raise InvalidNameFormatError(file_name)

    return short_checksum


def parse_generated_at(file_name: str) -> Optional[datetime]:
    """Best-effort recovery of the generation timestamp from a file name."""
    parts = _name_segments(file_name)
    if len(parts) < 5:
        return None
    try:
        return datetime.strptime(f"{parts[1]}_{parts[2]}", TIMESTAMP_FORMAT)
    except ValueError:
        return None
