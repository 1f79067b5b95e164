"""
Payment Provider Factory

Provides a single entry point for obtaining the adapter behind a payment
method. The rest of the application stays agnostic about which
implementation is in use.

Usage:
    from food_ordering.services.payment import get_payment_provider

    provider = get_payment_provider(PaymentMethod.STRIPE)
    session = await provider.create_session(order, transaction_id)

Environment Switching:
    - ENV_MODE=development → MockPaymentProvider impersonating the method
    - ENV_MODE=staging     → Stripe / SSLCommerz with sandbox credentials
    - ENV_MODE=production  → Stripe / SSLCommerz with live credentials
"""

import logging
from functools import lru_cache
from typing import Union

from food_ordering.core.config import get_settings
from food_ordering.models import PaymentMethod
from food_ordering.services.payment.base import (
    BasePaymentProvider,
    CallbackChannel,
    PaymentEvent,
    PaymentOutcome,
    SessionResult,
)
from food_ordering.services.payment.mock import MockConfig, MockPaymentProvider
from food_ordering.services.payment.sslcommerz import (
    SSLCommerzConfig,
    SSLCommerzPaymentProvider,
)
from food_ordering.services.payment.stripe import StripeConfig, StripePaymentProvider

logger = logging.getLogger(__name__)


def get_payment_provider(method: Union[PaymentMethod, str]) -> BasePaymentProvider:
    """
    Get the configured adapter for a payment method.

    The instance is cached per method so provider configuration is read
    from settings exactly once.

    Raises:
        ValueError: Unknown method, or real provider without credentials
    """
    return _build_provider(PaymentMethod(method))


@lru_cache()
def _build_provider(method: PaymentMethod) -> BasePaymentProvider:
    settings = get_settings()

    if settings.is_development:
        logger.info(f"Payment Provider: Using MockPaymentProvider for {method.value} (development mode)")
        return MockPaymentProvider(
            method.value,
            MockConfig(
                webhook_secret=settings.mock_webhook_secret,
                checkout_base_url=f"{settings.app_base_url.rstrip('/')}/mock-checkout",
                timeout_seconds=settings.provider_timeout_seconds,
            ),
        )

    logger.info(
        f"Payment Provider: Using real {method.value} adapter "
        f"({settings.env_mode.value} mode)"
    )

    if method == PaymentMethod.STRIPE:
        return StripePaymentProvider(StripeConfig.from_settings(settings))
    return SSLCommerzPaymentProvider(SSLCommerzConfig.from_settings(settings))


def reset_payment_providers() -> None:
    """
    Clear the cached adapters.

    Useful for testing or when configuration changes at runtime.
    """
    _build_provider.cache_clear()
    logger.debug("Payment provider cache cleared")


__all__ = [
    "get_payment_provider",
    "reset_payment_providers",
    "BasePaymentProvider",
    "CallbackChannel",
    "PaymentEvent",
    "PaymentOutcome",
    "SessionResult",
    "MockPaymentProvider",
    "StripePaymentProvider",
    "SSLCommerzPaymentProvider",
]
