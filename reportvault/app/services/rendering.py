"""
Report rendering service.

This module turns validated company data into a fixed-layout PDF using
reportlab's platypus layout engine.

Design guarantees:
- Deterministic layout: identical inputs and bindings produce identical
  page content (reportlab invariant mode, no random document ids)
- No data transformation: values are rendered as supplied; normalization
  happens upstream in the generator
- All user-supplied values are escaped before entering paragraph markup

RENDERING CONTRACT (ENFORCED):

Callers MUST supply:
- company / records:
    Normalized report content.
- bindings:
    Engine-generated presentation metadata (generation timestamp,
    request correlation id, format version, watermark).

Trust boundary:
- This module is presentation-only.
- Text extraction, hashing, signing and stamping occur strictly outside
  this module.
"""

from __future__ import annotations

import io
from datetime import datetime
from typing import List, Optional, Sequence
from xml.sax.saxutils import escape

from pydantic import BaseModel, ConfigDict
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from reportvault.app.schemas.company import CompanyRecord, FinancialRecord


class ReportRenderError(RuntimeError):
    """Raised when the report layout cannot be built."""


class RenderBindings(BaseModel):
    """Engine-generated values rendered next to the report content."""

    timestamp: datetime
    request_id: str
    version: str
    watermark: str = ""

    model_config = ConfigDict(frozen=True)


FINANCIAL_COLUMNS = (
    ("Year", None),
    ("Net Turnover (RON)", "net_turnover"),
    ("Net Profit (RON)", "net_profit"),
    ("Total Expenses (RON)", "total_expenses"),
    ("Total Liabilities (RON)", "liabilities"),
    ("Total Capital (RON)", "total_capital"),
    ("Fixed Assets (RON)", "fixed_assets"),
    ("Avg. Employees", "average_employees"),
)

_PAGE_SIZE = landscape(A4)
_MARGIN = 15 * mm


# ------------------------------------------------------------------
# Formatting helpers
# ------------------------------------------------------------------

def format_currency(amount: Optional[int]) -> str:
    if amount is None:
        return "N/A"
    return f"{amount:,}"


def format_flag(value: Optional[bool]) -> str:
    return "YES" if value else "NO"


def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ReportTitle", parent=base["Title"], fontSize=22, spaceAfter=4,
        ),
        "subtitle": ParagraphStyle(
            "ReportSubtitle", parent=base["Heading2"], alignment=1,
            textColor=colors.HexColor("#7f8c8d"),
        ),
        "meta": ParagraphStyle(
            "ReportMeta", parent=base["Normal"], alignment=1, fontSize=9,
        ),
        "watermark": ParagraphStyle(
            "ReportWatermark", parent=base["Normal"], alignment=2, fontSize=8,
            textColor=colors.HexColor("#ced4da"),
        ),
        "section": ParagraphStyle(
            "ReportSection", parent=base["Heading3"],
            textColor=colors.HexColor("#2c3e50"), spaceBefore=10,
        ),
        "label": ParagraphStyle(
            "ReportLabel", parent=base["Normal"], fontName="Helvetica-Bold",
        ),
        "cell": ParagraphStyle("ReportCell", parent=base["Normal"], fontSize=9),
        "header_cell": ParagraphStyle(
            "ReportHeaderCell", parent=base["Normal"], fontSize=9,
            fontName="Helvetica-Bold",
        ),
    }


# ------------------------------------------------------------------
# Story construction
# ------------------------------------------------------------------

def _info_rows(company: CompanyRecord, styles: dict) -> List[list]:
    entries = [
        ("Company Name:", company.company_name),
        ("Unique Tax ID (CUI):", company.cui),
        ("Registered Address:", company.fiscal_address),
        ("Trade Register No.:", company.trade_register_no),
        ("Phone:", company.phone),
        ("Fax:", company.fax),
        ("Postal Code:", company.postal_code),
        ("Inactive Status:", format_flag(company.is_inactive)),
        ("VAT Payer:", format_flag(company.is_vat_payer)),
    ]
    if company.caen_description is not None:
        entries.append(("Primary Activity (CAEN):", company.caen_description))

    return [
        [
            Paragraph(escape(label), styles["label"]),
            Paragraph(escape(value), styles["cell"]),
        ]
        for label, value in entries
        if value is not None and value.strip()
    ]


def _financial_table(records: Sequence[FinancialRecord], styles: dict) -> Table:
    header = [
        Paragraph(escape(title), styles["header_cell"])
        for title, _ in FINANCIAL_COLUMNS
    ]
    rows = [header]

    for record in sorted(records, key=lambda r: r.year, reverse=True):
        row = [Paragraph(f"<b>{record.year}</b>", styles["cell"])]
        for _, field in FINANCIAL_COLUMNS[1:]:
            value = getattr(record, field)
            if field == "average_employees":
                text = str(value) if value is not None else "N/A"
            else:
                text = format_currency(value)
            row.append(Paragraph(escape(text), styles["cell"]))
        rows.append(row)

    usable_width = _PAGE_SIZE[0] - 2 * _MARGIN
    year_width = 20 * mm
    other_width = (usable_width - year_width) / (len(FINANCIAL_COLUMNS) - 1)

    table = Table(
        rows,
        colWidths=[year_width] + [other_width] * (len(FINANCIAL_COLUMNS) - 1),
        repeatRows=1,
    )
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f8f9fa")),
                ("LINEBELOW", (0, 0), (-1, 0), 1.5, colors.HexColor("#dee2e6")),
                ("LINEBELOW", (0, 1), (-1, -2), 0.5, colors.HexColor("#dee2e6")),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    return table


def _build_story(
    company: CompanyRecord,
    records: Sequence[FinancialRecord],
    years: int,
    bindings: RenderBindings,
) -> list:
    styles = _styles()
    story: list = []

    if bindings.watermark:
        story.append(Paragraph(escape(bindings.watermark), styles["watermark"]))

    story.append(Paragraph("Company Report", styles["title"]))
    story.append(Paragraph(escape(company.company_name or "N/A"), styles["subtitle"]))
    story.append(
        Paragraph(
            escape(
                f"CUI: {company.cui} | Generated: "
                f"{bindings.timestamp.strftime('%Y-%m-%d %H:%M:%S')}"
            ),
            styles["meta"],
        )
    )
    story.append(
        Paragraph(
            escape(
                f"Report version: {bindings.version} | "
                f"Request ID: {bindings.request_id}"
            ),
            styles["meta"],
        )
    )
    story.append(Spacer(1, 6 * mm))

    story.append(Paragraph("General Information", styles["section"]))
    usable_width = _PAGE_SIZE[0] - 2 * _MARGIN
    info_table = Table(
        _info_rows(company, styles),
        colWidths=[60 * mm, usable_width - 60 * mm],
    )
    info_table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
    story.append(info_table)

    if records:
        story.append(
            Paragraph(
                f"Financial Data (Last {years} Years)", styles["section"]
            )
        )
        story.append(_financial_table(records, styles))

    return story


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def render_report_pdf(
    *,
    company: CompanyRecord,
    records: Sequence[FinancialRecord],
    years: int,
    bindings: RenderBindings,
) -> bytes:
    """
    Render the report and return the raw PDF bytes.

    Raises:
        ReportRenderError:
            If reportlab fails to lay out the document.
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=_PAGE_SIZE,
        leftMargin=_MARGIN,
        rightMargin=_MARGIN,
        topMargin=_MARGIN,
        bottomMargin=_MARGIN,
        title=f"Company Report - {company.cui}",
        author="Report API",
        subject=f"request-id={bindings.request_id}",
        keywords=[
            f"version={bindings.version}",
            f"timestamp={bindings.timestamp.isoformat()}",
            f"request-id={bindings.request_id}",
        ],
        invariant=1,
    )

    try:
        doc.build(_build_story(company, records, years, bindings))
    except Exception as exc:
        raise ReportRenderError(f"Report layout failed: {exc}") from exc

    return buffer.getvalue()
