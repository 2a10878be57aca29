"""
Signed report generation.

Pipeline (each step must succeed before the next one runs)::

    validate -> normalize -> reporting window -> render
             -> extract text -> text hash + signature -> stamp metadata
             -> artifact checksum -> file name

Two different digests come out of this pipeline on purpose:

- the *text hash* and *signature* cover the extracted page text and are
  embedded in the document, so a holder of the PDF alone can have it
  verified;
- the *artifact checksum* covers the final stamped bytes and names the
  stored file, so any byte-level change on disk is detected.

Any failure aborts generation with :class:`GenerationError` (or
:class:`ValidationError` for bad input). No partial artifact is ever
returned.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, timezone
from typing import Callable, Optional, Tuple

from reportvault.app.errors import GenerationError, ValidationError
from reportvault.app.schemas.artifacts import DocumentArtifact
from reportvault.app.schemas.company import CUI_PATTERN, CompanyRecord
from reportvault.app.services.datasource import CompanyDataSource
from reportvault.app.services.pdf_postprocess import (
    PdfPostProcessError,
    stamp_signature_metadata,
)
from reportvault.app.services.rendering import (
    RenderBindings,
    ReportRenderError,
    render_report_pdf,
)
from reportvault.app.services.signing import ReportSigner
from reportvault.app.services.text_extraction import (
    TextExtractionError,
    extract_document_text,
)
from reportvault.app.utils.hashing import calculate_checksum, generate_file_name


logger = logging.getLogger(__name__)

MIN_REPORT_YEARS = 1
MAX_REPORT_YEARS = 10

# Financial statements for year N are published during the summer of N+1.
DISCLOSURE_CUTOFF_MONTH = 7

_CUI_RE = re.compile(CUI_PATTERN)
_WHITESPACE_RE = re.compile(r"\s+")


def reporting_window(years: int, today: date) -> Tuple[int, int]:
    """
    Return ``(start_year, end_year)`` covering ``years`` reporting years.

    After July the previous year's statements are available; until then
    the latest complete year is two years back.
    """
    if today.month > DISCLOSURE_CUTOFF_MONTH:
        latest_available_year = today.year - 1
    else:
        latest_available_year = today.year - 2

    return latest_available_year - years + 1, latest_available_year


def normalize_phone_number(phone: str) -> str:
    return _WHITESPACE_RE.sub("", phone).replace("-", "")


def validate_and_normalize_company(company: CompanyRecord, cui: str) -> CompanyRecord:
    """Return a normalized copy of ``company``; the input is not modified."""
    if company.cui != cui:
        raise ValidationError("CUI mismatch in company data")

    if not cui or not cui.strip():
        raise ValidationError("CUI is required")
    if not _CUI_RE.match(cui):
        raise ValidationError("Invalid CUI format")

    updates = {}
    if company.phone is not None:
        updates["phone"] = normalize_phone_number(company.phone)
    if company.fiscal_address is not None:
        updates["fiscal_address"] = company.fiscal_address.strip().upper()

    return company.model_copy(update=updates)


class ReportGenerator:
    def __init__(
        self,
        *,
        data_source: CompanyDataSource,
        signer: ReportSigner,
        version: str = "1.0",
        watermark: str = "",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._data_source = data_source
        self._signer = signer
        self._version = version
        self._watermark = watermark
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def version(self) -> str:
        return self._version

    def generate(
        self,
        company: CompanyRecord,
        cui: str,
        years: int,
        validated_at: Optional[datetime] = None,
        request_id: Optional[str] = None,
    ) -> DocumentArtifact:
        """
        Generate a signed report for ``company``.

        Args:
            company:
                Company record as loaded from the data source.
            cui:
                Business identifier the caller was authorized for. Must
                equal ``company.cui``.
            years:
                Number of reporting years (1-10).
            validated_at:
                Generation timestamp. Defaults to now. The reporting
                window is derived from its date.
            request_id:
                Correlation id rendered into the document. Generated when
                omitted.
        """
        request_id = request_id or str(uuid.uuid4())
        timestamp = (validated_at or self._clock()).replace(microsecond=0)

        if not MIN_REPORT_YEARS <= years <= MAX_REPORT_YEARS:
            raise ValidationError(
                f"years must be between {MIN_REPORT_YEARS} and {MAX_REPORT_YEARS}"
            )

        normalized = validate_and_normalize_company(company, cui)

        logger.info(
            "Starting secure PDF generation for CUI: %s with %s years [RequestID: %s]",
            cui,
            years,
            request_id,
        )

        start_year, end_year = reporting_window(years, timestamp.date())
        logger.info(
            "PDF generation for CUI: %s - Years: %s to %s (requested %s years)",
            cui,
            start_year,
            end_year,
            years,
        )
        records = self._data_source.get_financial_records(cui, start_year, end_year)

        try:
            rendered = render_report_pdf(
                company=normalized,
                records=records,
                years=years,
                bindings=RenderBindings(
                    timestamp=timestamp,
                    request_id=request_id,
                    version=self._version,
                    watermark=self._watermark,
                ),
            )
            pdf_bytes = self._sign_and_stamp(rendered)

        except (ReportRenderError, TextExtractionError, PdfPostProcessError) as exc:
            logger.error(
                "Error generating PDF for CUI: %s [RequestID: %s]",
                cui,
                request_id,
                exc_info=True,
            )
            raise GenerationError(f"Report generation failed: {exc}") from exc

        checksum = calculate_checksum(pdf_bytes)
        file_name = generate_file_name(
            cui=cui,
            timestamp=timestamp,
            version=self._version,
            checksum=checksum,
        )

        logger.info(
            "PDF generated successfully for CUI: %s [RequestID: %s, Size: %s bytes, Checksum: %s]",
            cui,
            request_id,
            len(pdf_bytes),
            checksum,
        )

        return DocumentArtifact(
            pdf_bytes=pdf_bytes,
            file_name=file_name,
            checksum=checksum,
            size=len(pdf_bytes),
            timestamp=timestamp,
            version=self._version,
            request_id=request_id,
        )

    def _sign_and_stamp(self, rendered: bytes) -> bytes:
        text = extract_document_text(rendered)
        if not text.strip():
            raise TextExtractionError("Rendered report contains no extractable text")

        text_bytes = text.encode("utf-8")
        return stamp_signature_metadata(
            pdf_bytes=rendered,
            signature=self._signer.sign(text_bytes),
            algorithm=self._signer.algorithm,
            text_hash=calculate_checksum(text_bytes),
        )
