"""Email provider settings.

Environment variables use EMAIL_ prefix.
Example: EMAIL_ENABLED=true, EMAIL_BACKEND=brevo, EMAIL_BREVO_API_KEY=xkeysib-...
"""

from __future__ import annotations

from typing import Literal

from pydantic import EmailStr, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmailSettings(BaseSettings):
    """Transactional email configuration.

    Supports two backends:
    - brevo: Brevo (Sendinblue) transactional email API over HTTPS
    - console: Log messages instead of sending them (development)
    """

    enabled: bool = Field(default=False, description="Enable email sending")
    backend: Literal["brevo", "console"] = Field(
        default="console",
        description="Email backend: brevo (production), console (dev)",
    )
    brevo_api_key: SecretStr | None = Field(default=None, description="Brevo API key")
    brevo_base_url: str = Field(
        default="https://api.brevo.com/v3",
        description="Brevo API base URL",
    )
    default_from_email: EmailStr = Field(
        default="no-reply@mail.example.com",
        description="Sender address for notification emails",
    )
    default_from_name: str = Field(default="Notifications", max_length=255)
    default_reply_to: EmailStr | None = Field(default=None)
    timeout: float = Field(
        default=30.0,
        gt=0,
        le=300.0,
        description="HTTP timeout for provider calls in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def validate_backend_config(self) -> EmailSettings:
        """Require an API key when the Brevo backend is active."""
        if self.enabled and self.backend == "brevo" and self.brevo_api_key is None:
            msg = "EMAIL_BREVO_API_KEY is required when EMAIL_BACKEND=brevo"
            raise ValueError(msg)
        return self

    @property
    def is_configured(self) -> bool:
        return self.enabled
