"""
Agency back-office — Configuration via environment variables.
"""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./agency.db",
        description="Async SQLAlchemy DB URL",
    )

    # Public site
    app_url: str = Field(default="http://localhost:3000", description="Base URL used in client-facing links")
    company_name: str = Field(default="Agency")

    # Email / SMTP
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    smtp_email: str = Field(default="", description="SMTP login / sender address")
    smtp_app_password: str = Field(default="", description="SMTP app password")
    email_from: str = Field(default="", description="Override for the From header")

    # Payment provider (Stripe payment links)
    stripe_secret_key: str = Field(default="", description="Stripe secret key — blank disables payment links")
    stripe_webhook_secret: str = Field(default="", description="Webhook signing secret — blank skips verification")
    stripe_api_url: str = Field(default="https://api.stripe.com/v1")
    currency: str = Field(default="brl")

    # Staged payments
    down_payment_rate: Decimal = Field(default=Decimal("0.25"))
    final_payment_rate: Decimal = Field(default=Decimal("0.75"))
    payment_due_days: int = Field(default=5)

    # Proposals / delivery
    approval_token_days: int = Field(default=7)
    meeting_link: str = Field(default="https://meet.google.com/new")
    whatsapp_country_code: str = Field(default="55")

    @property
    def sender(self) -> str:
        """From header — explicit override or '<company> <smtp login>'."""
        if self.email_from:
            return self.email_from
        return f"{self.company_name} <{self.smtp_email}>"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
