"""
Centralized configuration management for the report service.

Pydantic v2 settings management to enforce strict validation,
zero secret leakage, and fast-failure on invalid configuration.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SensitiveEnv = Annotated[
    SecretStr,
    Field(description="Sensitive credential, redacted from logs"),
]

ReportVersion = Annotated[
    str,
    Field(
        pattern=r"^[0-9A-Za-z.\-]{1,16}$",
        description=(
            "Report format version. Must not contain underscores: it is "
            "embedded in underscore-delimited artifact file names."
        ),
    ),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast at startup if the signing secret is missing or any value
    is malformed.
    """

    # ---------------------------------------------------------------------
    # Artifact storage
    # ---------------------------------------------------------------------

    storage_path: Annotated[
        Path,
        Field(
            default=Path("./pdf-storage"),
            description="Root directory of the immutable report store",
        ),
    ]

    storage_enabled: Annotated[
        bool,
        Field(
            default=True,
            description=(
                "When false, reports are named but never written to disk."
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # Document integrity
    # ---------------------------------------------------------------------

    signature_secret: SensitiveEnv

    report_version: ReportVersion = "1.0"

    watermark_text: Annotated[
        str,
        Field(default="", description="Optional watermark in the report header"),
    ]

    # ---------------------------------------------------------------------
    # Verification sessions
    # ---------------------------------------------------------------------

    session_ttl_minutes: Annotated[
        int,
        Field(default=10, ge=1, le=60, description="Session validity window"),
    ]

    allow_session_rebind: Annotated[
        bool,
        Field(
            default=True,
            description=(
                "Allow a second login to re-bind an already verified "
                "session to a newer identity."
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # Login proxy integration
    # ---------------------------------------------------------------------

    public_base_url: Annotated[
        AnyHttpUrl,
        Field(
            default="http://localhost:8080",
            description="Externally visible base URL of this service",
        ),
    ]

    login_authorization_url: Annotated[
        str,
        Field(
            default="/oauth2/authorization/google",
            description="Login provider entry point; receives the session as 'state'",
        ),
    ]

    identity_header: Annotated[
        str,
        Field(
            default="X-Auth-Request-Email",
            description="Header carrying the identity asserted by the login proxy",
        ),
    ]

    # ---------------------------------------------------------------------
    # Outbound email (Postmark)
    # ---------------------------------------------------------------------

    postmark_api_url: Annotated[
        AnyHttpUrl,
        Field(default="https://api.postmarkapp.com/email"),
    ]

    postmark_api_token: Annotated[
        SecretStr,
        Field(default=SecretStr(""), description="Postmark server token"),
    ]

    postmark_from_email: str = "noreply@your-domain.com"
    postmark_from_name: str = "Company Reports"

    # ---------------------------------------------------------------------
    # Operational Boundaries
    # ---------------------------------------------------------------------

    max_upload_size_mb: Annotated[
        int,
        Field(
            default=25,
            ge=1,
            le=25,
            description="Upper bound for documents submitted for verification",
        ),
    ]

    @field_validator("signature_secret")
    @classmethod
    def secret_must_not_be_blank(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("signature_secret must not be empty")
        return v

    model_config = SettingsConfigDict(
        env_prefix="REPORTVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.

    Uses an explicit singleton pattern within the FastAPI lifecycle.
    """
    return Settings()  # singleton within process
