"""
Outbound delivery of verified reports by email.

Only a :class:`StorageResult` can be delivered, i.e. bytes that were
read back from storage and passed the integrity check. The attachment is
sent verbatim; nothing here re-renders or re-encodes the report beyond
the base64 transport encoding the provider requires.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

import httpx
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from pydantic import SecretStr

from reportvault.app.errors import DeliveryError
from reportvault.app.schemas.artifacts import StorageResult, format_size
from reportvault.app.schemas.company import CompanyRecord


logger = logging.getLogger(__name__)

TEMPLATE_ROOT = Path(__file__).resolve().parent.parent / "templates"
EMAIL_TEMPLATE = "report_email.html.jinja"

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_ROOT),
    autoescape=select_autoescape(enabled_extensions=("html", "jinja")),
    undefined=StrictUndefined,
)


class ReportMailer(Protocol):
    async def send_report(
        self,
        *,
        recipient: str,
        company: CompanyRecord,
        artifact: StorageResult,
        request_id: str,
    ) -> str:
        """Deliver ``artifact`` to ``recipient`` and return the provider message id."""
        ...


def render_email_body(
    *,
    company: CompanyRecord,
    artifact: StorageResult,
    request_id: str,
    sent_at: datetime,
    from_name: str,
) -> str:
    template = _env.get_template(EMAIL_TEMPLATE)
    return template.render(
        company_name=company.company_name or "N/A",
        cui=company.cui,
        sent_at=sent_at,
        request_id=request_id,
        file_name=artifact.file_name,
        file_size=format_size(artifact.size),
        checksum=artifact.checksum,
        from_name=from_name,
    )


class PostmarkMailer:
    """Sends reports through the Postmark transactional email API."""

    def __init__(
        self,
        *,
        api_token: Union[SecretStr, str],
        from_email: str,
        from_name: str,
        api_url: str = "https://api.postmarkapp.com/email",
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._api_token = (
            api_token.get_secret_value()
            if isinstance(api_token, SecretStr)
            else api_token
        )
        self._from_email = from_email
        self._from_name = from_name
        self._api_url = api_url
        self._client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_message(
        self,
        *,
        recipient: str,
        company: CompanyRecord,
        artifact: StorageResult,
        request_id: str,
    ) -> dict:
        html_body = render_email_body(
            company=company,
            artifact=artifact,
            request_id=request_id,
            sent_at=self._clock(),
            from_name=self._from_name,
        )

        return {
            "From": f"{self._from_name} <{self._from_email}>",
            "To": recipient,
            "Subject": (
                f"Company Report - {company.company_name or 'N/A'} "
                f"(CUI: {company.cui})"
            ),
            "HtmlBody": html_body,
            "Attachments": [
                {
                    "Name": artifact.file_name,
                    "Content": base64.b64encode(artifact.pdf_bytes).decode("ascii"),
                    "ContentType": "application/pdf",
                }
            ],
            "Headers": [
                {"Name": "X-Request-ID", "Value": request_id},
                {"Name": "X-PDF-Checksum", "Value": artifact.checksum},
                {"Name": "X-Company-CUI", "Value": company.cui},
            ],
        }

    async def send_report(
        self,
        *,
        recipient: str,
        company: CompanyRecord,
        artifact: StorageResult,
        request_id: str,
    ) -> str:
        if not self._api_token.strip():
            logger.warning("Postmark API token not configured")
            raise DeliveryError("Postmark API token is not configured")

        logger.info(
            "Preparing Postmark email for %s with PDF: %s [RequestID: %s]",
            recipient,
            artifact.file_name,
            request_id,
        )

        message = self.build_message(
            recipient=recipient,
            company=company,
            artifact=artifact,
            request_id=request_id,
        )
        headers = {
            "Accept": "application/json",
            "X-Postmark-Server-Token": self._api_token,
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    self._api_url, json=message, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(
                        self._api_url, json=message, headers=headers
                    )
            response.raise_for_status()
            body = response.json()

        except httpx.HTTPStatusError as exc:
            logger.error(
                "Postmark rejected email: HTTP %s [RequestID: %s]",
                exc.response.status_code,
                request_id,
            )
            raise DeliveryError(
                f"Email sending failed via Postmark: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            logger.error(
                "Postmark connection error: %s [RequestID: %s]", exc, request_id
            )
            raise DeliveryError(f"Email sending failed via Postmark: {exc}") from exc
        except ValueError as exc:
            raise DeliveryError("Postmark returned a non-JSON response") from exc

        message_id = body.get("MessageID") if isinstance(body, dict) else None
        if not message_id:
            logger.error(
                "Postmark API returned unexpected response: %s [RequestID: %s]",
                body,
                request_id,
            )
            raise DeliveryError("Email sending failed - unexpected API response")

        logger.info(
            "Email sent successfully via Postmark to %s with MessageID: %s [RequestID: %s]",
            recipient,
            message_id,
            request_id,
        )
        return str(message_id)
