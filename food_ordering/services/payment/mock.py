"""
Mock Payment Provider Implementation

Simulates either provider without making real API calls.
Used in development mode (ENV_MODE=development) to:
    - Exercise the complete order -> session -> callback flow locally
    - Run webhook storm simulations without touching a gateway
    - Develop without internet connectivity

Behavior:
    - Simulates configurable response times
    - Randomly declines ``failure_rate`` of session requests
    - Webhooks use the Stripe event shape, signed with
      HMAC-SHA256(MOCK_WEBHOOK_SECRET, body) in hex
    - Redirect/IPN form posts follow the SSLCommerz field names
"""

import asyncio
import hashlib
import hmac
import json
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from food_ordering.core.exceptions import (
    ProviderRejected,
    SignatureInvalid,
    ValidationError,
)
from food_ordering.models import Order, PaymentStatus
from food_ordering.services.payment.base import (
    BasePaymentProvider,
    CallbackChannel,
    CallbackPayload,
    PaymentEvent,
    PaymentOutcome,
    SessionResult,
    order_total_minor,
    parse_form_callback,
)

logger = logging.getLogger(__name__)


@dataclass
class MockSession:
    order_id: str
    transaction_id: str
    amount_minor: int
    paid: bool = True


@dataclass
class MockConfig:
    """Knobs for the simulated gateway."""
    webhook_secret: str = "whsec_mock"
    checkout_base_url: str = "http://localhost:5000/mock-checkout"
    failure_rate: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    timeout_seconds: float = 10.0
    decline_reasons: list = field(default_factory=lambda: [
        ("card_declined", "Your card was declined."),
        ("insufficient_funds", "Your card has insufficient funds."),
        ("expired_card", "Your card has expired."),
    ])


class MockPaymentProvider(BasePaymentProvider):
    """
    In-memory stand-in for a payment provider.

    Args:
        name: Provider name to impersonate (a PaymentMethod value)
        config: Simulation settings

    Example:
        >>> provider = MockPaymentProvider("stripe")
        >>> session = await provider.create_session(order, "tx-1")
        >>> (await provider.verify_session(session.session_handle)).is_completed
        True
    """

    def __init__(self, name: str, config: Optional[MockConfig] = None):
        self._name = name
        self._config = config or MockConfig()
        self.timeout_seconds = self._config.timeout_seconds
        self.sessions: dict[str, MockSession] = {}

        logger.info(
            f"MockPaymentProvider initialized as {name} "
            f"(failure_rate={self._config.failure_rate:.0%})"
        )

    @property
    def provider_name(self) -> str:
        """Return the impersonated provider name."""
        return self._name

    def sign_payload(self, payload: bytes) -> str:
        """Signature the webhook channel expects for ``payload``."""
        return hmac.new(
            self._config.webhook_secret.encode("utf-8"),
            payload,
            hashlib.sha256,
        ).hexdigest()

    def mark_unpaid(self, session_handle: str) -> None:
        """Make a session report as not yet paid."""
        self.sessions[session_handle].paid = False

    async def _simulate_latency(self) -> None:
        latency = random.uniform(self._config.min_latency, self._config.max_latency)
        if latency:
            await asyncio.sleep(latency)

    async def create_session(
        self,
        order: Order,
        transaction_id: str,
        customer_info: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        """Simulate opening a checkout session."""
        await self._bounded(self._simulate_latency(), "create_session")

        if random.random() < self._config.failure_rate:
            code, message = random.choice(self._config.decline_reasons)
            logger.debug(f"Mock: Session declined - {code}")
            raise ProviderRejected(message, code=code)

        handle = f"cs_mock_{uuid.uuid4().hex[:24]}"
        self.sessions[handle] = MockSession(
            order_id=order.id,
            transaction_id=transaction_id,
            amount_minor=order_total_minor(order),
        )

        logger.info(f"Mock: Session {handle} created for order {order.id}")

        return SessionResult(
            session_handle=handle,
            redirect_url=f"{self._config.checkout_base_url}/{handle}",
            transaction_id=transaction_id,
        )

    async def verify_session(self, session_handle: str) -> PaymentOutcome:
        """Report a known session as paid (unless marked otherwise)."""
        await self._bounded(self._simulate_latency(), "verify_session")

        session = self.sessions.get(session_handle)
        if session is None:
            return PaymentOutcome(status=None, provider_ref=session_handle, raw_status="INVALID")

        return PaymentOutcome(
            status=PaymentStatus.COMPLETED if session.paid else None,
            provider_ref=session_handle,
            transaction_id=session.transaction_id,
            order_id=session.order_id,
            raw_status="paid" if session.paid else "unpaid",
        )

    def _webhook_event(self, payload: bytes, signature: Optional[str]) -> Optional[PaymentEvent]:
        if not signature or not hmac.compare_digest(self.sign_payload(payload), signature):
            logger.warning("Mock: Webhook signature invalid")
            raise SignatureInvalid("Webhook signature verification failed")

        try:
            event = json.loads(payload)
            session = event["data"]["object"]
        except (ValueError, KeyError, TypeError):
            raise ValidationError("Webhook Error: Malformed event body")

        if event.get("type") != "checkout.session.completed":
            return None

        metadata = session.get("metadata") or {}
        order_id = metadata.get("orderId") or session.get("client_reference_id")
        transaction_id = metadata.get("transactionId")
        if not order_id and not transaction_id:
            raise ValidationError("Webhook Error: Session carries no order reference")

        return PaymentEvent(
            provider=self._name,
            outcome=PaymentStatus.COMPLETED,
            transaction_id=transaction_id,
            order_id=order_id,
            provider_ref=session.get("id"),
            trusted=True,
        )

    async def handle_callback(
        self,
        payload: CallbackPayload,
        signature: Optional[str] = None,
        channel: CallbackChannel = CallbackChannel.WEBHOOK,
    ) -> Optional[PaymentEvent]:
        """Signed JSON on the webhook channel, form posts everywhere else."""
        if channel == CallbackChannel.WEBHOOK:
            if not isinstance(payload, (bytes, bytearray)):
                raise ValidationError("Webhook Error: Invalid payload format")
            return self._webhook_event(bytes(payload), signature)

        if not isinstance(payload, Mapping):
            raise ValidationError("Expected a form-encoded callback")
        return parse_form_callback(self._name, payload, channel)

    async def health_check(self) -> bool:
        """Mock health check always passes."""
        logger.debug("Mock: Health check passed")
        return True
