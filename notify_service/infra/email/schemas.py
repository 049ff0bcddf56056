"""Email message schemas."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class EmailRecipient(BaseModel):
    """A single addressee with an optional display name."""

    email: EmailStr
    name: str | None = Field(default=None, max_length=255)


class EmailMessage(BaseModel):
    """Email message ready for a provider.

    Example:
        message = EmailMessage(
            to=[EmailRecipient(email="athlete@example.com", name="Sam")],
            subject="Your membership renews tomorrow",
            body_text="Your membership renews tomorrow.",
            body_html="<p>Your membership renews tomorrow.</p>",
            tags=["membership_renewal", "billing"],
        )
    """

    to: list[EmailRecipient] = Field(min_length=1, description="Primary recipients")
    subject: str = Field(min_length=1, max_length=500)
    body_html: str | None = Field(default=None, description="HTML body")
    body_text: str | None = Field(default=None, description="Plain text body")
    from_email: EmailStr | None = Field(default=None, description="Overrides the default sender")
    from_name: str | None = Field(default=None, max_length=255)
    reply_to: EmailRecipient | None = None
    headers: dict[str, str] = Field(default_factory=dict, description="Custom SMTP headers")
    tags: list[str] = Field(default_factory=list, description="Provider-side analytics tags")

    @property
    def recipient_emails(self) -> list[str]:
        return [str(recipient.email) for recipient in self.to]
