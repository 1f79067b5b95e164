"""
Payment Provider Abstract Base Class

Defines the capability set every payment provider adapter implements:

    create_session   - open a provider-hosted checkout for an order
    verify_session   - ask the provider how a session ended (read-only)
    handle_callback  - turn a provider notification into a PaymentEvent

Adapters never touch the database. Session bookkeeping is done by the
checkout service and every payment_status change goes through the
reconciliation engine.

Design Pattern: Strategy Pattern
    - Adding a provider means implementing one interface
    - Facilitates testing with the mock implementation
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Awaitable, Mapping, Optional, TypeVar, Union

from food_ordering.core.exceptions import ProviderUnavailable, ValidationError
from food_ordering.models import Order, PaymentStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

CallbackPayload = Union[bytes, Mapping[str, Any]]


class CallbackChannel(str, Enum):
    """How a provider notification reached us."""
    WEBHOOK = "webhook"
    SUCCESS = "success"
    FAIL = "fail"
    CANCEL = "cancel"
    IPN = "ipn"


@dataclass
class SessionResult:
    """
    Standardized result of opening a checkout session.

    Attributes:
        session_handle: Provider's identifier for the session
        redirect_url: Where the customer completes payment
        transaction_id: Our correlation token sent along with the session
    """
    session_handle: str
    redirect_url: str
    transaction_id: str


@dataclass
class PaymentOutcome:
    """
    What the provider reports about a session.

    ``status`` is ``None`` while the payment is neither settled nor failed.
    """
    status: Optional[PaymentStatus]
    provider_ref: Optional[str] = None
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    raw_status: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    def to_event(self, provider: str, trusted: bool = True) -> "PaymentEvent":
        if self.status is None:
            raise ValueError("An unsettled outcome cannot be reconciled")
        return PaymentEvent(
            provider=provider,
            outcome=self.status,
            transaction_id=self.transaction_id,
            order_id=self.order_id,
            provider_ref=self.provider_ref,
            trusted=trusted,
        )


@dataclass
class PaymentEvent:
    """
    Provider-neutral payment notification fed to reconciliation.

    Attributes:
        provider: Name of the provider that produced the event
        outcome: COMPLETED or FAILED
        transaction_id: Correlation token (idempotency key)
        order_id: Order reference when the channel carries one
        provider_ref: Provider-side id (session, val_id, ...)
        trusted: False for unsigned redirect/IPN payloads
    """
    provider: str
    outcome: PaymentStatus
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    provider_ref: Optional[str] = None
    trusted: bool = True
    metadata: dict = field(default_factory=dict)


@dataclass
class LineItem:
    """A charge line in the provider's smallest currency unit."""
    name: str
    unit_amount: int
    quantity: int = 1
    image: Optional[str] = None


def to_minor_units(amount: Union[float, str, Decimal]) -> int:
    """
    Convert a major-unit amount to integer minor units (29.99 -> 2999).

    Goes through ``Decimal(str(...))`` so binary float error never
    shifts a cent.
    """
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def amounts_match(
    declared: Union[float, str, Decimal],
    expected: Union[float, str, Decimal],
    tolerance: Union[float, str, Decimal],
) -> bool:
    """True when two amounts differ by at most ``tolerance``, compared in minor units."""
    return abs(to_minor_units(declared) - to_minor_units(expected)) <= to_minor_units(tolerance)


def from_minor_units(minor: int) -> str:
    """Format minor units as a two-decimal major-unit string (2999 -> '29.99')."""
    return str((Decimal(int(minor)) / Decimal(100)).quantize(Decimal("0.01")))


def build_line_items(order: Order) -> list[LineItem]:
    """Line items mirroring the order's snapshotted items plus delivery fee."""
    lines = [
        LineItem(
            name=item.get("name") or "Food item",
            unit_amount=to_minor_units(item.get("price", 0)),
            quantity=int(item.get("quantity", 1)),
            image=item.get("image"),
        )
        for item in order.items
    ]

    if order.delivery_fee:
        lines.append(
            LineItem(name="Delivery Fee", unit_amount=to_minor_units(order.delivery_fee))
        )

    return lines


def order_total_minor(order: Order) -> int:
    """Sum of line items in minor units."""
    return sum(line.unit_amount * line.quantity for line in build_line_items(order))


VALID_FORM_STATUSES = frozenset({"VALID", "VALIDATED"})
FAILED_FORM_STATUSES = frozenset({"FAILED"})


def parse_form_callback(
    provider: str,
    payload: Mapping[str, Any],
    channel: "CallbackChannel",
) -> Optional[PaymentEvent]:
    """
    Map an unsigned redirect/IPN form post onto a PaymentEvent.

    Field names follow the SSLCommerz convention: ``tran_id`` is our
    transaction id, ``value_a`` the order id and ``val_id`` the gateway's
    validation handle.
    """
    if channel == CallbackChannel.CANCEL:
        return None

    order_id = payload.get("value_a") or None
    transaction_id = payload.get("tran_id") or None

    if not order_id and not transaction_id:
        raise ValidationError("Callback carries no order reference")

    if channel == CallbackChannel.SUCCESS:
        outcome = PaymentStatus.COMPLETED
    elif channel == CallbackChannel.FAIL:
        outcome = PaymentStatus.FAILED
    else:
        status = (payload.get("status") or "").upper()
        if status in VALID_FORM_STATUSES:
            outcome = PaymentStatus.COMPLETED
        elif status in FAILED_FORM_STATUSES:
            outcome = PaymentStatus.FAILED
        else:
            logger.info(
                f"{provider}: IPN for {transaction_id} with status {status or 'none'} ignored"
            )
            return None

    return PaymentEvent(
        provider=provider,
        outcome=outcome,
        transaction_id=transaction_id,
        order_id=order_id,
        provider_ref=payload.get("val_id") or None,
        trusted=False,
        metadata={"channel": channel.value},
    )


class BasePaymentProvider(ABC):
    """
    Abstract base class for payment provider adapters.

    All adapters (Stripe, SSLCommerz, Mock) inherit from this class and
    implement the abstract capabilities. Outbound calls go through
    ``_bounded`` so a slow provider surfaces ``ProviderUnavailable``
    instead of hanging the request.
    """

    timeout_seconds: float = 10.0

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the payment provider.

        Returns:
            str: Provider name matching a PaymentMethod value
        """
        pass

    @abstractmethod
    async def create_session(
        self,
        order: Order,
        transaction_id: str,
        customer_info: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        """
        Open a checkout session for ``order``.

        Args:
            order: Persisted order to charge for
            transaction_id: Fresh correlation token for this session
            customer_info: Optional customer fields (name, email, phone, ...)

        Returns:
            SessionResult: Handle and customer-facing URL

        Raises:
            ProviderRejected: Provider refused the session
            ProviderUnavailable: Provider unreachable or timed out
        """
        pass

    @abstractmethod
    async def verify_session(self, session_handle: str) -> PaymentOutcome:
        """
        Query the provider for a session's result. Never mutates orders.

        Raises:
            ProviderRejected: Provider refused the lookup
            ProviderUnavailable: Provider unreachable or timed out
        """
        pass

    @abstractmethod
    async def handle_callback(
        self,
        payload: CallbackPayload,
        signature: Optional[str] = None,
        channel: CallbackChannel = CallbackChannel.WEBHOOK,
    ) -> Optional[PaymentEvent]:
        """
        Translate a provider notification into a PaymentEvent.

        Returns:
            PaymentEvent to reconcile, or None when the notification
            carries nothing to apply (unrelated event type, cancel, ...)

        Raises:
            SignatureInvalid: Signed channel failed verification
            ValidationError: Payload is structurally invalid or the
                channel is not supported by this provider
        """
        pass

    async def health_check(self) -> bool:
        """Adapters are assumed reachable unless they override this."""
        return True

    async def _bounded(self, awaitable: Awaitable[T], action: str) -> T:
        """Await a provider call under the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                f"{self.provider_name}: {action} timed out after {self.timeout_seconds}s"
            )
            raise ProviderUnavailable(
                f"{self.provider_name} did not respond in time"
            )
