import io
from unittest.mock import patch

import pikepdf
import pytest

from reportvault.app.schemas.artifacts import VerificationStatus
from reportvault.app.services.pdf_postprocess import (
    read_signature_metadata,
    stamp_signature_metadata,
)
from reportvault.app.services.rendering import RenderBindings, render_report_pdf
from reportvault.app.services.signing import ReportSigner
from reportvault.app.services.text_extraction import (
    TextExtractionError,
    extract_document_text,
)
from reportvault.app.services.verification import verify_document
from reportvault.tests.fixtures.report_factory import (
    GENERATION_TIME,
    SAMPLE_CUI,
    sample_company,
)


@pytest.fixture
def signed_report(generator):
    return generator.generate(sample_company(), SAMPLE_CUI, 3, request_id="req-1").pdf_bytes


def _restamp(pdf_bytes, embedded, **overrides):
    values = dict(
        signature=embedded.signature,
        algorithm=embedded.algorithm,
        text_hash=embedded.text_hash,
    )
    values.update(overrides)
    return stamp_signature_metadata(pdf_bytes=pdf_bytes, **values)


def test_genuine_report_is_valid(signed_report, signer):
    result = verify_document(signed_report, signer)

    assert result.status is VerificationStatus.VALID
    assert result.is_valid
    assert result.text_hash == read_signature_metadata(signed_report).text_hash


def test_one_character_change_with_copied_metadata_is_invalid(generator, signed_report, signer):
    forged = generator.generate(
        sample_company(company_name="ACME INDUSTRIES SRK"),
        SAMPLE_CUI,
        3,
        request_id="req-1",
    ).pdf_bytes

    tampered = _restamp(forged, read_signature_metadata(signed_report))
    result = verify_document(tampered, signer)

    assert result.status is VerificationStatus.INVALID
    assert "hash" in result.reason


def test_recomputed_hash_without_secret_is_invalid(signed_report, signer):
    embedded = read_signature_metadata(signed_report)
    forged_signature = ReportSigner("attacker-secret").sign(b"anything")

    tampered = _restamp(signed_report, embedded, signature=forged_signature)
    result = verify_document(tampered, signer)

    assert result.status is VerificationStatus.INVALID
    assert "Signature" in result.reason


def test_wrong_verification_secret_is_invalid(signed_report):
    result = verify_document(signed_report, ReportSigner("another-secret"))

    assert result.status is VerificationStatus.INVALID


def test_unsupported_algorithm_is_invalid(signed_report, signer):
    embedded = read_signature_metadata(signed_report)
    tampered = _restamp(signed_report, embedded, algorithm="RSA-SHA256")

    result = verify_document(tampered, signer)

    assert result.status is VerificationStatus.INVALID
    assert "algorithm" in result.reason


def test_algorithm_name_is_case_insensitive(signed_report, signer):
    embedded = read_signature_metadata(signed_report)
    restamped = _restamp(signed_report, embedded, algorithm="hmac-sha256")

    assert verify_document(restamped, signer).status is VerificationStatus.VALID


def test_unsigned_pdf_is_unrecognized(signer):
    unsigned = render_report_pdf(
        company=sample_company(),
        records=[],
        years=3,
        bindings=RenderBindings(
            timestamp=GENERATION_TIME, request_id="req-1", version="1.0"
        ),
    )

    result = verify_document(unsigned, signer)

    assert result.status is VerificationStatus.UNRECOGNIZED


def test_non_pdf_is_unrecognized(signer):
    result = verify_document(b"not a pdf", signer)

    assert result.status is VerificationStatus.UNRECOGNIZED


def _edit_pdf(pdf_bytes, edit):
    out = io.BytesIO()
    with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
        edit(pdf)
        pdf.save(out)
    return out.getvalue()


def test_missing_algorithm_field_is_not_held_against_the_document(signed_report, signer):
    def drop_algorithm(pdf):
        del pdf.docinfo["/Report-Signature-Alg"]

    stripped = _edit_pdf(signed_report, drop_algorithm)
    assert read_signature_metadata(stripped).algorithm is None

    result = verify_document(stripped, signer)

    assert result.status is VerificationStatus.VALID


def test_content_with_unknown_filter_is_invalid_not_an_error(signed_report, signer):
    def replace_contents(pdf):
        stream = pikepdf.Stream(pdf, b"not decodable")
        stream.Filter = pikepdf.Name("/BogusDecode")
        pdf.pages[0].obj["/Contents"] = stream

    broken = _edit_pdf(signed_report, replace_contents)

    result = verify_document(broken, signer)

    assert result.status is VerificationStatus.INVALID


def test_any_parser_failure_becomes_extraction_error(signed_report, signer):
    with patch(
        "reportvault.app.services.text_extraction.pypdf.PdfReader",
        side_effect=NotImplementedError("Unsupported filter /BogusDecode"),
    ):
        with pytest.raises(TextExtractionError):
            extract_document_text(signed_report)

        result = verify_document(signed_report, signer)

    assert result.status is VerificationStatus.INVALID
