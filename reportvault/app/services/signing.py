"""
Keyed signatures over report content.

A single shared secret signs the extracted text of every report. The
signature is embedded in the document itself so that anyone holding
only the PDF can have it verified by this service.

Stable abstraction boundary:
- Callers hand in bytes and get back an opaque signature string.
- The algorithm identifier embedded next to the signature is
  ``SIGNATURE_ALGORITHM``; verifiers reject anything else.
"""

import base64
import hashlib
import hmac
from typing import Union

from pydantic import SecretStr

from reportvault.app.errors import SigningError


SIGNATURE_ALGORITHM = "HMAC-SHA256"


class ReportSigner:
    """HMAC-SHA256 signer bound to the configured shared secret."""

    algorithm = SIGNATURE_ALGORITHM

    def __init__(self, secret: Union[SecretStr, str]):
        raw = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
        if not raw:
            raise SigningError("Signature secret is not configured")
        self._key = raw.encode("utf-8")

    def sign(self, data: Union[bytes, bytearray]) -> str:
        """Return the base64-encoded HMAC-SHA256 of ``data``."""
        if not isinstance(data, (bytes, bytearray)):
            raise SigningError(
                f"sign expects bytes, got {type(data).__name__}"
            )
        digest = hmac.new(self._key, bytes(data), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def verify_signature(self, data: Union[bytes, bytearray], signature: str) -> bool:
        """Constant-time comparison of a provided signature against ``data``."""
        if not signature:
            return False
        expected = self.sign(data)
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
