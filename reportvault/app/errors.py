"""
Error taxonomy for the report service.

Every failure surfaced by the core belongs to exactly one of these
classes. The HTTP layer maps them to status codes; nothing in the core
inspects exception messages to decide behaviour.

Classes
-------
ValidationError
    Malformed or mismatched input. Recoverable by correcting the input.
NotFoundError
    Session, company or artifact absent (or expired). A normal negative
    result, not a fault.
UnauthorizedError
    A session exists but does not authorize a release. Deliberately
    carries no detail about *why*.
IntegrityViolationError
    Checksum or signature mismatch on stored data. Security-significant
    and never retried: retrying would produce a different document, not
    repair the corrupted one.
GenerationError / StorageError
    I/O or cryptographic failure while producing or persisting an
    artifact. No partial state is committed, so the whole operation is
    safe to retry.
"""

from __future__ import annotations


class ReportVaultError(RuntimeError):
    """Base class for all report service failures."""


# ------------------------------------------------------------------
# Input errors
# ------------------------------------------------------------------

class ValidationError(ReportVaultError):
    """Raised when input is malformed or inconsistent."""


class InvalidNameFormatError(ValidationError):
    """Raised when an artifact file name does not follow the naming grammar."""

    def __init__(self, file_name: str):
        super().__init__(
            f"Invalid report file name format for checksum extraction: {file_name}"
        )
        self.file_name = file_name


# ------------------------------------------------------------------
# Negative results
# ------------------------------------------------------------------

class NotFoundError(ReportVaultError):
    """Raised when a requested resource does not exist."""


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str):
        super().__init__(f"Verification session '{session_id}' not found")
        self.session_id = session_id


class CompanyNotFoundError(NotFoundError):
    def __init__(self, cui: str):
        super().__init__(f"Company not found for CUI: {cui}")
        self.cui = cui


class ArtifactNotFoundError(NotFoundError):
    def __init__(self, file_name: str):
        super().__init__(f"Report not found in storage: {file_name}")
        self.file_name = file_name


class UnauthorizedError(ReportVaultError):
    """
    Raised when a session does not authorize a document release.

    The message is identical for missing, expired, unverified and
    identity-mismatched sessions.
    """

    def __init__(self) -> None:
        super().__init__("Session not verified or expired")


# ------------------------------------------------------------------
# Security violations
# ------------------------------------------------------------------

class IntegrityViolationError(ReportVaultError):
    """Raised when stored bytes no longer match their recorded checksum."""

    def __init__(self, file_name: str, expected: str, actual: str):
        super().__init__(
            "Report integrity verification failed. "
            "The file may be corrupt or modified."
        )
        self.file_name = file_name
        self.expected = expected
        self.actual = actual


# ------------------------------------------------------------------
# Processing failures
# ------------------------------------------------------------------

class GenerationError(ReportVaultError):
    """Raised when rendering, text extraction or stamping fails."""


class SigningError(GenerationError):
    """Raised when the keyed signature cannot be computed."""


class StorageError(ReportVaultError):
    """Raised when persisting or reading an artifact fails."""


class DeliveryError(ReportVaultError):
    """Raised when the outbound delivery provider rejects a report."""
