"""
Upstream company data boundary.

The report core never fetches registry data itself. It consumes company
and financial records through :class:`CompanyDataSource`; the production
implementation (registry client plus database cache) lives outside this
package. :class:`InMemoryCompanyDataSource` backs tests and local runs.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from reportvault.app.schemas.company import CompanyRecord, FinancialRecord


class CompanyDataSource(Protocol):
    def get_company(self, cui: str) -> Optional[CompanyRecord]:
        ...

    def get_financial_records(
        self,
        cui: str,
        start_year: int,
        end_year: int,
    ) -> List[FinancialRecord]:
        """Records for ``start_year..end_year`` inclusive, in any order."""
        ...


class InMemoryCompanyDataSource:
    def __init__(
        self,
        companies: Iterable[CompanyRecord] = (),
        records: Iterable[FinancialRecord] = (),
    ):
        self._lock = threading.Lock()
        self._companies: Dict[str, CompanyRecord] = {}
        self._records: Dict[Tuple[str, int], FinancialRecord] = {}

        for company in companies:
            self.add_company(company)
        for record in records:
            self.add_record(record)

    def add_company(self, company: CompanyRecord) -> None:
        with self._lock:
            self._companies[company.cui] = company

    def add_record(self, record: FinancialRecord) -> None:
        # One record per company and year; later records replace earlier ones.
        with self._lock:
            self._records[(record.cui, record.year)] = record

    def get_company(self, cui: str) -> Optional[CompanyRecord]:
        with self._lock:
            return self._companies.get(cui)

    def get_financial_records(
        self,
        cui: str,
        start_year: int,
        end_year: int,
    ) -> List[FinancialRecord]:
        with self._lock:
            return [
                record
                for (record_cui, year), record in self._records.items()
                if record_cui == cui and start_year <= year <= end_year
            ]
