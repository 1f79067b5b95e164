"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports three modes:
    - DEVELOPMENT: Uses mock payment providers (no API keys needed)
    - STAGING: Real providers with sandbox / test credentials
    - PRODUCTION: Real providers with live credentials

The ENV_MODE variable controls which payment providers are instantiated,
enabling seamless switching between local testing and deployment.

Usage:
    from food_ordering.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # Mock providers
    else:
        # Stripe / SSLCommerz
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with mock providers
        PRODUCTION: Live environment with real provider integrations
        STAGING: Pre-production testing with real APIs but sandbox keys
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Provider secrets should NEVER be committed to version control.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Food Ordering Backend",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=5000,
        description="API server port"
    )
    app_base_url: str = Field(
        default="http://localhost:5000",
        description="Public base URL of this backend (used for provider callbacks)"
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Front-end URL that payment redirects land on"
    )

    # ==========================================================================
    # DATABASE
    # ==========================================================================

    database_url: str = Field(
        default="sqlite+aiosqlite:///./food_ordering.db",
        description="SQLAlchemy async database URL"
    )

    # ==========================================================================
    # REDIS / CELERY
    # ==========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )

    # ==========================================================================
    # AUTH
    # ==========================================================================

    jwt_secret: str = Field(
        default="change-me",
        description="Secret used to verify bearer tokens"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="Bearer token signing algorithm"
    )

    # ==========================================================================
    # STRIPE (provider A)
    # ==========================================================================

    stripe_secret_key: Optional[str] = Field(
        default=None,
        description="Stripe API secret key (sk_live_... or sk_test_...)"
    )
    stripe_webhook_secret: Optional[str] = Field(
        default=None,
        description="Stripe webhook signing secret (whsec_...)"
    )
    stripe_currency: str = Field(
        default="usd",
        description="Currency for Stripe checkout sessions"
    )
    stripe_success_url: str = Field(
        default="http://localhost:3000/payment-success",
        description="Where Stripe sends the customer after paying"
    )
    stripe_cancel_url: str = Field(
        default="http://localhost:3000/checkout",
        description="Where Stripe sends the customer after cancelling"
    )

    # ==========================================================================
    # SSLCOMMERZ (provider B)
    # ==========================================================================

    sslcommerz_store_id: Optional[str] = Field(
        default=None,
        description="SSLCommerz store id"
    )
    sslcommerz_store_passwd: Optional[str] = Field(
        default=None,
        description="SSLCommerz store password"
    )
    sslcommerz_is_live: bool = Field(
        default=False,
        description="Use the live gateway instead of the sandbox"
    )
    sslcommerz_currency: str = Field(
        default="BDT",
        description="Currency for SSLCommerz sessions"
    )
    sslcommerz_verify_callbacks: bool = Field(
        default=True,
        description="Confirm success/IPN callbacks with the validation API before completing"
    )

    # ==========================================================================
    # PAYMENTS (shared)
    # ==========================================================================

    provider_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for any outbound payment provider call"
    )
    total_tolerance: float = Field(
        default=0.01,
        ge=0,
        description="Allowed difference between declared and computed order totals"
    )
    mock_webhook_secret: str = Field(
        default="whsec_mock",
        description="HMAC secret the mock provider signs webhooks with"
    )

    # ==========================================================================
    # PAYMENT LEDGER
    # ==========================================================================

    data_directory: str = Field(
        default="data",
        description="Directory for data files"
    )
    ledger_filename: str = Field(
        default="payments.xlsx",
        description="Excel ledger of completed payments"
    )
    ledger_lock_timeout: int = Field(
        default=30,
        description="Seconds to wait for the ledger file lock"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def use_real_services(self) -> bool:
        """Check if real payment providers should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.stripe_secret_key:
                missing.append("STRIPE_SECRET_KEY")
            if not self.stripe_webhook_secret:
                missing.append("STRIPE_WEBHOOK_SECRET")
            if not self.sslcommerz_store_id:
                missing.append("SSLCOMMERZ_STORE_ID")
            if not self.sslcommerz_store_passwd:
                missing.append("SSLCOMMERZ_STORE_PASSWD")
            if self.jwt_secret == "change-me":
                missing.append("JWT_SECRET")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded only once and shared for the whole process
    lifetime. Call ``get_settings.cache_clear()`` after changing the
    environment (tests do this).

    Returns:
        Settings: Configured application settings
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    return logging.getLogger("food_ordering")
