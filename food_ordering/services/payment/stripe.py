"""
Stripe Payment Provider (provider A)

Hosted Checkout Sessions with signed webhooks, using the official Stripe
Python SDK. Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY for session creation / retrieval
    - STRIPE_WEBHOOK_SECRET for webhook verification

Security Notes:
    - Webhooks are verified against the raw request body and fail closed
    - The secret key is passed per call, never stored on the SDK module
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import stripe

from food_ordering.core.config import Settings
from food_ordering.core.exceptions import (
    ProviderRejected,
    ProviderUnavailable,
    SignatureInvalid,
    ValidationError,
)
from food_ordering.models import Order, PaymentMethod, PaymentStatus
from food_ordering.services.payment.base import (
    BasePaymentProvider,
    CallbackChannel,
    CallbackPayload,
    PaymentEvent,
    PaymentOutcome,
    SessionResult,
    build_line_items,
)

logger = logging.getLogger(__name__)

# Checkout event types that mean the money has arrived.
COMPLETION_EVENTS = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})

# Delayed payment methods that ended up declined.
FAILURE_EVENTS = frozenset({"checkout.session.async_payment_failed"})

# Session payment_status values Stripe reports for a settled checkout.
PAID_STATUSES = frozenset({"paid", "no_payment_required"})


@dataclass(frozen=True)
class StripeConfig:
    """Explicit Stripe configuration, built once at process start."""
    secret_key: str
    webhook_secret: Optional[str]
    currency: str = "usd"
    success_url: str = "http://localhost:3000/payment-success"
    cancel_url: str = "http://localhost:3000/checkout"
    timeout_seconds: float = 10.0
    webhook_tolerance: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeConfig":
        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required outside development mode. "
                "Set it in your .env file or environment variables."
            )
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            currency=settings.stripe_currency,
            success_url=settings.stripe_success_url,
            cancel_url=settings.stripe_cancel_url,
            timeout_seconds=settings.provider_timeout_seconds,
        )


class StripePaymentProvider(BasePaymentProvider):
    """
    Stripe Checkout adapter.

    The SDK is synchronous, so every call runs in a worker thread under
    the configured timeout.

    Example:
        >>> provider = StripePaymentProvider(StripeConfig.from_settings(settings))
        >>> session = await provider.create_session(order, transaction_id)
        >>> session.redirect_url
        'https://checkout.stripe.com/c/pay/cs_test_...'
    """

    def __init__(self, config: StripeConfig):
        self._config = config
        self.timeout_seconds = config.timeout_seconds

        if not config.webhook_secret:
            logger.warning("Stripe: webhook secret not configured, all webhooks will be rejected")

        logger.info(f"StripePaymentProvider initialized (currency={config.currency})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return PaymentMethod.STRIPE.value

    async def _call(self, action: str, func, *args, **kwargs):
        """Run a blocking SDK call off the event loop, translating SDK errors."""
        try:
            return await self._bounded(
                asyncio.to_thread(func, *args, api_key=self._config.secret_key, **kwargs),
                action,
            )
        except stripe.APIConnectionError as e:
            logger.error(f"Stripe: Connection error during {action} - {e}")
            raise ProviderUnavailable("Payment service temporarily unavailable")
        except stripe.AuthenticationError as e:
            logger.critical(f"Stripe: Authentication failed during {action} - {e}")
            raise ProviderRejected("Payment service configuration error", code="authentication_error")
        except stripe.StripeError as e:
            logger.error(
                f"Stripe: {action} failed - {getattr(e, 'code', None)}: {e.user_message or e}"
            )
            raise ProviderRejected(
                e.user_message or "Stripe payment processing error",
                code=getattr(e, "code", None) or "stripe_error",
            )

    def _session_params(
        self,
        order: Order,
        transaction_id: str,
        customer_info: Mapping[str, Any],
    ) -> dict[str, Any]:
        line_items = [
            {
                "price_data": {
                    "currency": self._config.currency,
                    "product_data": {
                        "name": line.name,
                        **({"images": [line.image]} if line.image else {}),
                    },
                    "unit_amount": line.unit_amount,
                },
                "quantity": line.quantity,
            }
            for line in build_line_items(order)
        ]

        params = {
            "payment_method_types": ["card"],
            "line_items": line_items,
            "mode": "payment",
            "success_url": (
                f"{self._config.success_url}?orderId={order.id}"
                "&session_id={CHECKOUT_SESSION_ID}"
            ),
            "cancel_url": f"{self._config.cancel_url}?orderId={order.id}",
            "client_reference_id": order.id,
            "metadata": {
                "orderId": order.id,
                "transactionId": transaction_id,
            },
        }

        if customer_info.get("email"):
            params["customer_email"] = customer_info["email"]

        return params

    async def create_session(
        self,
        order: Order,
        transaction_id: str,
        customer_info: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        """Create a Stripe Checkout Session for the order."""
        if not order.items:
            raise ValidationError("Order has no items to process")

        params = self._session_params(order, transaction_id, customer_info or {})

        logger.info(
            f"Stripe: Creating checkout session for order {order.id} "
            f"({len(params['line_items'])} line items)"
        )

        session = await self._call(
            "create_session", stripe.checkout.Session.create, **params
        )

        logger.info(f"Stripe: Checkout session created - {session.id}")

        return SessionResult(
            session_handle=session.id,
            redirect_url=session.url,
            transaction_id=transaction_id,
        )

    async def verify_session(self, session_handle: str) -> PaymentOutcome:
        """Retrieve a Checkout Session and report whether it is paid."""
        session = await self._call(
            "verify_session", stripe.checkout.Session.retrieve, session_handle
        )

        metadata = getattr(session, "metadata", None) or {}
        raw_status = getattr(session, "payment_status", None)

        logger.debug(f"Stripe: Session {session_handle} payment_status={raw_status}")

        return PaymentOutcome(
            status=PaymentStatus.COMPLETED if raw_status in PAID_STATUSES else None,
            provider_ref=session_handle,
            transaction_id=metadata.get("transactionId"),
            order_id=metadata.get("orderId") or getattr(session, "client_reference_id", None),
            raw_status=raw_status,
        )

    def _verify_signature(self, payload: bytes, signature: Optional[str]) -> None:
        if not self._config.webhook_secret:
            logger.error("Stripe: Webhook rejected, no signing secret configured")
            raise SignatureInvalid("Webhook signing secret not configured")

        if not signature:
            logger.warning("Stripe: Webhook rejected, Stripe-Signature header missing")
            raise SignatureInvalid("Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self._config.webhook_secret,
                self._config.webhook_tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            raise SignatureInvalid("Webhook signature verification failed")

    async def handle_callback(
        self,
        payload: CallbackPayload,
        signature: Optional[str] = None,
        channel: CallbackChannel = CallbackChannel.WEBHOOK,
    ) -> Optional[PaymentEvent]:
        """
        Verify and translate a Stripe webhook.

        SECURITY: the signature is checked against the unparsed body
        before anything is read from it.
        """
        if channel != CallbackChannel.WEBHOOK:
            raise ValidationError(f"Stripe does not support {channel.value} callbacks")

        if not isinstance(payload, (bytes, bytearray)):
            raise ValidationError("Webhook Error: Invalid payload format")

        self._verify_signature(bytes(payload), signature)

        try:
            event = json.loads(payload)
            event_type = event["type"]
            session = event["data"]["object"]
        except (ValueError, KeyError, TypeError):
            raise ValidationError("Webhook Error: Malformed event body")

        logger.info(f"Stripe: Webhook verified - {event_type}")

        if event_type in FAILURE_EVENTS:
            outcome = PaymentStatus.FAILED
        elif event_type in COMPLETION_EVENTS:
            outcome = PaymentStatus.COMPLETED
        else:
            return None

        if (
            event_type == "checkout.session.completed"
            and session.get("payment_status") not in PAID_STATUSES
        ):
            # Delayed payment methods settle later via async_payment_succeeded
            logger.info(f"Stripe: Session {session.get('id')} completed but not yet paid")
            return None

        metadata = session.get("metadata") or {}
        order_id = metadata.get("orderId") or session.get("client_reference_id")
        transaction_id = metadata.get("transactionId")

        if not order_id and not transaction_id:
            logger.warning(f"Stripe: No orderId found in session {session.get('id')} metadata")
            raise ValidationError("Webhook Error: Session carries no order reference")

        return PaymentEvent(
            provider=self.provider_name,
            outcome=outcome,
            transaction_id=transaction_id,
            order_id=order_id,
            provider_ref=session.get("id"),
            trusted=True,
            metadata={"event_id": event.get("id"), "event_type": event_type},
        )

    async def health_check(self) -> bool:
        """Verify Stripe credentials with a lightweight account lookup."""
        try:
            await self._call("health_check", stripe.Account.retrieve)
            return True
        except (ProviderRejected, ProviderUnavailable):
            return False
