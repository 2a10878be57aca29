"""
PDF post-processing: signature metadata stamping.

This module binds precomputed integrity values into a rendered report
as document information entries. Stamping is a second pass over an
already rendered PDF:

- page content streams are carried over untouched, so the text a
  verifier extracts later is the text that was hashed and signed
- only the document information dictionary is written
- the operation is deterministic for identical inputs

Trust boundary:
- This module does NOT compute hashes or signatures.
- Reading embedded values back is non-authoritative; verification
  happens in ``reportvault.app.services.verification``.
"""

from __future__ import annotations

import io
from typing import Optional

import pikepdf

from reportvault.app.schemas.artifacts import EmbeddedSignature


INFO_SIGNATURE = "/Report_Signature"
INFO_SIGNATURE_ALGORITHM = "/Report-Signature-Alg"
INFO_TEXT_HASH = "/Report-Content-Text-Hash"

REPORT_TITLE = "Company Report"
REPORT_CREATOR = "Report API"


class PdfPostProcessError(RuntimeError):
    """Raised when stamping metadata into a rendered PDF fails."""


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def stamp_signature_metadata(
    *,
    pdf_bytes: bytes,
    signature: str,
    algorithm: str,
    text_hash: str,
    title: str = REPORT_TITLE,
    creator: str = REPORT_CREATOR,
) -> bytes:
    """
    Return a copy of ``pdf_bytes`` carrying the signature metadata.

    Raises:
        PdfPostProcessError:
            If any value is empty or the PDF cannot be rewritten.
    """
    for name, value in (
        ("signature", signature),
        ("algorithm", algorithm),
        ("text_hash", text_hash),
    ):
        if not value or not value.strip():
            raise PdfPostProcessError(
                f"{name} was provided but is empty or invalid."
            )

    try:
        with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
            info = pdf.docinfo
            info[INFO_SIGNATURE] = signature
            info[INFO_SIGNATURE_ALGORITHM] = algorithm
            info[INFO_TEXT_HASH] = text_hash
            info["/Creator"] = creator
            info["/Title"] = title

            output = io.BytesIO()
            pdf.save(output, deterministic_id=True)

    except pikepdf.PdfError as exc:
        raise PdfPostProcessError(
            f"Failed to stamp signature metadata: {exc}"
        ) from exc

    return output.getvalue()


def read_signature_metadata(pdf_bytes: bytes) -> Optional[EmbeddedSignature]:
    """
    Read the embedded signature metadata.

    Returns ``None`` if the bytes are not a readable PDF. Individual
    fields are ``None`` when absent.
    """
    try:
        with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
            info = pdf.trailer.get("/Info")
            if info is None:
                return EmbeddedSignature()

            def _field(key: str) -> Optional[str]:
                value = info.get(key)
                return str(value) if value is not None else None

            return EmbeddedSignature(
                signature=_field(INFO_SIGNATURE),
                algorithm=_field(INFO_SIGNATURE_ALGORITHM),
                text_hash=_field(INFO_TEXT_HASH),
            )

    except Exception:
        return None
