"""
Checkout

Opens a provider session for an existing order. The order keeps its
payment state; only ``payment_method`` and a fresh ``transaction_id`` are
stored, and only after the provider accepted the session.
"""

import logging
import uuid
from typing import Any, Mapping, Optional

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from food_ordering.auth import CurrentUser
from food_ordering.core.config import get_settings
from food_ordering.core.exceptions import (
    AlreadyPaid,
    Forbidden,
    InvalidStateTransition,
    OrderNotFound,
    ValidationError,
)
from food_ordering.models import Order, PaymentStatus, utcnow
from food_ordering.services.payment.base import BasePaymentProvider, SessionResult, amounts_match

logger = logging.getLogger(__name__)


def new_transaction_id() -> str:
    return uuid.uuid4().hex


async def start_payment_session(
    db: AsyncSession,
    provider: BasePaymentProvider,
    order_id: str,
    caller: CurrentUser,
    amount: float,
    customer_info: Optional[Mapping[str, Any]] = None,
) -> tuple[Order, SessionResult]:
    """
    Create a checkout session at ``provider`` for ``order_id``.

    Raises:
        OrderNotFound: Unknown order
        Forbidden: Caller is neither owner nor admin
        AlreadyPaid: Order payment already completed
        ValidationError: ``amount`` differs from the order total
        InvalidStateTransition: A session with another provider exists
        ProviderRejected / ProviderUnavailable: From the adapter
    """
    order = await db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)

    if not caller.can_access(order.owner_id):
        raise Forbidden("Access denied")

    if order.is_paid:
        raise AlreadyPaid(order.id)

    tolerance = get_settings().total_tolerance
    if not amounts_match(amount, order.total, tolerance):
        raise ValidationError(
            f"Amount {amount:.2f} does not match order total {order.total:.2f}"
        )

    provider_name = provider.provider_name
    if order.transaction_id and order.payment_method != provider_name:
        raise InvalidStateTransition(
            f"Order {order.id} already has a {order.payment_method} payment session"
        )

    transaction_id = new_transaction_id()
    session = await provider.create_session(order, transaction_id, customer_info)

    result = await db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            or_(
                Order.payment_status.is_(None),
                Order.payment_status != PaymentStatus.COMPLETED.value,
            ),
        )
        .values(
            transaction_id=transaction_id,
            payment_method=provider_name,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount != 1:
        logger.warning(f"Order {order.id} was paid while its {provider_name} session was opening")
        raise AlreadyPaid(order.id)

    order = await db.get(Order, order.id, populate_existing=True)

    logger.info(
        f"Checkout: {provider_name} session {session.session_handle} "
        f"opened for order {order.id} (tx={transaction_id})"
    )
    return order, session
