from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

from reportvault.app.config import Settings
from reportvault.app.errors import DeliveryError
from reportvault.app.schemas.company import CompanyRecord, FinancialRecord
from reportvault.app.services.datasource import InMemoryCompanyDataSource


TEST_SECRET = "unit-test-signature-secret"
SAMPLE_CUI = "12345678"

# Month > 7, so the latest disclosed year is 2023.
GENERATION_TIME = datetime(2024, 9, 15, 10, 30, 0, tzinfo=timezone.utc)


# ------------------------------------------------------------------
# Upstream data
# ------------------------------------------------------------------

def sample_company(cui: str = SAMPLE_CUI, **overrides) -> CompanyRecord:
    values = dict(
        cui=cui,
        company_name="ACME INDUSTRIES SRL",
        fiscal_address="  str. Exemplului 10, Bucuresti  ",
        trade_register_no="J40/1234/2010",
        phone="021 123-45-67",
        postal_code="010101",
        caen_code=6201,
        caen_description="Computer programming activities",
        is_vat_payer=True,
        is_inactive=False,
    )
    values.update(overrides)
    return CompanyRecord(**values)


def sample_records(cui: str = SAMPLE_CUI, first_year: int = 2018, last_year: int = 2024) -> List[FinancialRecord]:
    return [
        FinancialRecord(
            cui=cui,
            year=year,
            net_turnover=1_000_000 + year,
            net_profit=100_000 + year,
            total_expenses=900_000,
            liabilities=250_000,
            total_capital=500_000,
            fixed_assets=300_000,
            average_employees=42,
        )
        for year in range(first_year, last_year + 1)
    ]


def sample_data_source(cui: str = SAMPLE_CUI) -> InMemoryCompanyDataSource:
    return InMemoryCompanyDataSource(
        companies=[sample_company(cui)],
        records=sample_records(cui),
    )


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------

def make_settings(storage_path: Path, **overrides) -> Settings:
    values = dict(
        storage_path=storage_path,
        signature_secret=TEST_SECRET,
        postmark_api_token="test-postmark-token",
    )
    values.update(overrides)
    return Settings(**values)


# ------------------------------------------------------------------
# Time
# ------------------------------------------------------------------

class FakeClock:
    """Manually advanced clock for session expiry tests."""

    def __init__(self, start: datetime = GENERATION_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ------------------------------------------------------------------
# Delivery
# ------------------------------------------------------------------

class RecordingMailer:
    """Mailer double that records deliveries instead of sending them."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_report(self, *, recipient, company, artifact, request_id):
        if self.fail:
            raise DeliveryError("provider unavailable")
        self.sent.append((recipient, company, artifact, request_id))
        return f"msg-{len(self.sent)}"
