"""
Deterministic visible document text extraction.

The extracted text is what gets hashed and signed at generation time and
what a verifier re-extracts later. Both sides MUST go through
:func:`extract_document_text` so that they see identical strings.

IMPORTANT DESIGN CONSTRAINTS
----------------------------
- Extraction is fully deterministic with respect to the PDF's content
  streams and ToUnicode mappings.
- Layout and formatting are ignored; only page text is returned.
- Document-level metadata (info dictionary, XMP) is never part of the
  extracted text, so stamping metadata does not change it.
"""

from __future__ import annotations

import io

import pypdf


class TextExtractionError(RuntimeError):
    """Raised when a PDF cannot be parsed for text extraction."""


def extract_document_text(pdf_bytes: bytes) -> str:
    """
    Extract visible document text, one line-terminated block per page.

    Raises:
        TextExtractionError:
            If the bytes are not a readable PDF.
    """
    try:
        reader = pypdf.PdfReader(io.BytesIO(pdf_bytes))

        pages = []
        for page in reader.pages:
            text = page.extract_text()
            if text:
                pages.append(text + "\n")

        return "".join(pages)

    except Exception as exc:
        # Untrusted input: pypdf also raises NotImplementedError for unknown filters.
        raise TextExtractionError(
            f"Failed to extract document text: {exc}"
        ) from exc
