"""
Independent verification of report signatures.

Given nothing but a PDF, decide whether it is an unmodified report issued
by this service. The check is self-contained: it re-extracts the page
text, recomputes the text hash and compares the keyed signature embedded
in the document.

Outcomes:

    UNRECOGNIZED  no signature metadata, or the bytes are not a PDF
    INVALID       metadata present but the content no longer matches it
    VALID         text hash and signature both match

Verification never raises for untrusted input.
"""

from __future__ import annotations

import logging

from reportvault.app.schemas.artifacts import (
    SignatureVerificationResult,
    VerificationStatus,
)
from reportvault.app.services.pdf_postprocess import read_signature_metadata
from reportvault.app.services.signing import SIGNATURE_ALGORITHM, ReportSigner
from reportvault.app.services.text_extraction import (
    TextExtractionError,
    extract_document_text,
)
from reportvault.app.utils.hashing import calculate_checksum


logger = logging.getLogger(__name__)


def _result(status: VerificationStatus, reason: str, text_hash=None):
    return SignatureVerificationResult(status=status, reason=reason, text_hash=text_hash)


def verify_document(pdf_bytes: bytes, signer: ReportSigner) -> SignatureVerificationResult:
    embedded = read_signature_metadata(pdf_bytes)
    if embedded is None:
        return _result(VerificationStatus.UNRECOGNIZED, "Document is not a readable PDF")

    if not embedded.signature or not embedded.text_hash:
        return _result(
            VerificationStatus.UNRECOGNIZED,
            "Document carries no report signature metadata",
        )

    if (
        embedded.algorithm is not None
        and embedded.algorithm.strip().upper() != SIGNATURE_ALGORITHM
    ):
        logger.warning("Unsupported signature algorithm: %s", embedded.algorithm)
        return _result(
            VerificationStatus.INVALID,
            f"Unsupported signature algorithm: {embedded.algorithm}",
        )

    try:
        text = extract_document_text(pdf_bytes)
    except TextExtractionError:
        logger.warning("Text extraction failed during verification", exc_info=True)
        return _result(VerificationStatus.INVALID, "Document text could not be extracted")

    text_bytes = text.encode("utf-8")
    text_hash = calculate_checksum(text_bytes)

    if text_hash != embedded.text_hash.strip().lower():
        logger.warning(
            "Text hash mismatch: embedded=%s computed=%s",
            embedded.text_hash,
            text_hash,
        )
        return _result(
            VerificationStatus.INVALID,
            "Document content does not match its embedded hash",
            text_hash,
        )

    if not signer.verify_signature(text_bytes, embedded.signature):
        logger.warning("Signature mismatch for text hash %s", text_hash)
        return _result(
            VerificationStatus.INVALID,
            "Signature does not match document content",
            text_hash,
        )

    logger.info("Document signature verified (text hash %s)", text_hash)
    return _result(VerificationStatus.VALID, "Signature valid", text_hash)
