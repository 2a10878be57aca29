from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


CUI_PATTERN = r"^[0-9]{2,10}$"

# Registry indicator codes for each reported financial field.
INDICATOR_CODES = {
    "net_turnover": "I13",
    "net_profit": "I18",
    "total_expenses": "I15",
    "liabilities": "I7",
    "total_capital": "I10",
    "fixed_assets": "I1",
    "average_employees": "I20",
}


class CompanyRecord(BaseModel):
    """
    General company data as supplied by the upstream registry.

    Only ``cui`` is mandatory. Every other field is rendered when present
    and omitted from the report otherwise.
    """

    cui: str = Field(..., description="Unique tax registration code (CUI)")

    company_name: Optional[str] = None
    fiscal_address: Optional[str] = None
    trade_register_no: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    postal_code: Optional[str] = None

    caen_code: Optional[int] = None
    caen_description: Optional[str] = None

    is_vat_payer: Optional[bool] = None
    is_inactive: Optional[bool] = None

    model_config = ConfigDict(frozen=True)


class FinancialRecord(BaseModel):
    """
    One reporting year of balance sheet indicators, amounts in RON.

    ``None`` means the value is unknown and renders as ``N/A``. Records
    built from raw registry indicators via :meth:`from_indicators` never
    contain ``None``: a missing indicator defaults to ``0``.
    """

    cui: str
    year: int

    net_turnover: Optional[int] = None
    net_profit: Optional[int] = None
    total_expenses: Optional[int] = None
    liabilities: Optional[int] = None
    total_capital: Optional[int] = None
    fixed_assets: Optional[int] = None
    average_employees: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_indicators(
        cls,
        cui: str,
        year: int,
        indicators: Mapping[str, int],
    ) -> "FinancialRecord":
        """
        Build a record from registry indicator codes (``I13`` etc.).

        Indicators absent from ``indicators`` are recorded as ``0``, which
        is how the registry reports an empty balance sheet line.
        """
        values = {
            field: int(indicators.get(code, 0))
            for field, code in INDICATOR_CODES.items()
        }
        return cls(cui=cui, year=year, **values)
