"""
Configuration management for the BubbleBeads storefront API.

Loads settings from .env via pydantic-settings.

Security notes:
    - validate_production_settings() enforces strict CORS in production
    - Payment webhooks fail closed when PHONEPE_WEBHOOK_SECRET is unset
    - Invoice tokens fall back to JWT_SECRET when no dedicated secret is set
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    app_version: str = "1.0.0"
    public_base_url: str = "http://localhost:3000"   # storefront (redirect target)
    api_base_url: str = "http://localhost:8000"      # this API (gateway callback)

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/bubblebeads.db"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "bubblebeads-api"
    jwt_access_ttl_minutes: int = 60

    # ── Invoice Tokens ──────────────────────────────────────────────
    invoice_token_secret: str = ""
    invoice_token_issuer: str = "clean-pods-app"
    invoice_token_audience: str = "invoice-access"
    invoice_token_ttl_minutes: int = 5

    # ── PhonePe Payment Gateway ─────────────────────────────────────
    phonepe_client_id: str = ""
    phonepe_client_secret: str = ""
    phonepe_client_version: str = "1"
    phonepe_base_url: str = "https://api-preprod.phonepe.com"
    phonepe_webhook_secret: str = ""
    phonepe_order_expiry_seconds: int = 1200
    phonepe_timeout_seconds: float = 15.0

    # ── Payment Reconciler ──────────────────────────────────────────
    reconciler_enabled: bool = True
    reconciler_poll_seconds: int = 60
    reconciler_min_age_seconds: int = 120   # leave fresh orders to callback/webhook
    reconciler_batch_size: int = 20

    # ── Email (Resend) ──────────────────────────────────────────────
    resend_api_key: str = ""
    email_from: str = "BubbleBeads <noreply@bubblebeads.in>"
    admin_email: str = ""

    # ── Slack ───────────────────────────────────────────────────────
    slack_orders_webhook_url: str = ""
    slack_contact_webhook_url: str = ""

    # ── Admin ───────────────────────────────────────────────────────
    # Legacy X-Admin-Key header for the orders export (empty = disabled)
    admin_orders_key: str = ""

    # ── Rate Limiting ───────────────────────────────────────────────
    rate_limit_enabled: bool = True

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000,https://bubblebeads.in,https://www.bubblebeads.in"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def invoice_signing_secret(self) -> str:
        return self.invoice_token_secret or self.jwt_secret

    @property
    def phonepe_configured(self) -> bool:
        return bool(self.phonepe_client_id and self.phonepe_client_secret)

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Raises ValueError in production for unsafe values; logs warnings
        for the same problems in every other environment.
        """
        if self.is_production:
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to sign access and invoice tokens."
                )
            if not self.phonepe_configured:
                raise ValueError(
                    "PHONEPE_CLIENT_ID and PHONEPE_CLIENT_SECRET must be set in production."
                )
            if not self.phonepe_webhook_secret:
                raise ValueError(
                    "PHONEPE_WEBHOOK_SECRET must be set in production. "
                    "Unsigned payment webhooks are rejected."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if not self.jwt_secret:
                warnings.append("JWT_SECRET not set (login and invoices will fail)")
            if not self.phonepe_configured:
                warnings.append("PhonePe credentials not set (checkout disabled)")
            if not self.phonepe_webhook_secret:
                warnings.append("PHONEPE_WEBHOOK_SECRET not set (webhooks rejected)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
