"""
Payment Reconciliation Engine

The only code allowed to change an order's ``payment_status`` in response
to a provider event. Duplicate webhooks, a verify call racing a redirect,
or a stale ``failed`` arriving after ``completed`` all converge on the
same final state:

    1. Resolve the order (by id, else by transaction id)
    2. Conditionally update it:
           UPDATE orders SET payment_status = :outcome, ...
            WHERE id = :id
              AND (payment_status IS NULL OR payment_status != 'completed')
    3. rowcount 1 -> applied; rowcount 0 -> already completed (no-op)

Because the completed-check and the write are one statement, two
concurrent ``completed`` events apply exactly once and the
``on_completed`` hook fires exactly once.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from food_ordering.core.exceptions import OrderNotFound, ValidationError
from food_ordering.models import Order, PaymentStatus, utcnow
from food_ordering.services.payment.base import PaymentEvent

logger = logging.getLogger(__name__)

CompletionHook = Callable[[Order, PaymentEvent], Any]


@dataclass
class ReconciliationResult:
    """
    Outcome of applying one event.

    Attributes:
        order: Order as persisted after the attempt
        applied: False when the event was an idempotent no-op
        reason: Why a no-op was skipped, None when applied
    """
    order: Order
    applied: bool
    reason: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.order.payment_status == PaymentStatus.COMPLETED.value


def payment_summary(order: Order, event: PaymentEvent) -> dict[str, Any]:
    """Ledger row for a freshly completed payment."""
    return {
        "order_id": order.id,
        "owner_id": order.owner_id,
        "transaction_id": order.transaction_id,
        "provider": event.provider,
        "provider_ref": event.provider_ref,
        "amount": order.total,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
    }


class ReconciliationEngine:
    """
    Applies PaymentEvents to orders under compare-and-set semantics.

    Args:
        on_completed: Called once per order when a ``completed`` event is
            actually applied (never on no-ops). Failures in the hook are
            logged; the payment stays recorded.
    """

    def __init__(self, on_completed: Optional[CompletionHook] = None):
        self._on_completed = on_completed

    async def resolve_order_id(self, db: AsyncSession, event: PaymentEvent) -> str:
        """Order the event refers to: its own order id, else by transaction id."""
        if event.order_id:
            return event.order_id

        if not event.transaction_id:
            raise ValidationError("Payment event carries neither order nor transaction id")

        result = await db.execute(
            select(Order.id).where(Order.transaction_id == event.transaction_id)
        )
        order_id = result.scalar_one_or_none()
        if order_id is None:
            raise OrderNotFound(f"with transaction {event.transaction_id}")
        return order_id

    async def apply(self, db: AsyncSession, event: PaymentEvent) -> ReconciliationResult:
        """
        Apply ``event`` to its order.

        Raises:
            OrderNotFound: No order matches the event
            ValidationError: Event has no usable reference
        """
        order_id = await self.resolve_order_id(db, event)

        values: dict[str, Any] = {
            "payment_status": event.outcome.value,
            "updated_at": utcnow(),
        }
        if event.outcome == PaymentStatus.COMPLETED:
            values["paid_at"] = utcnow()
            if event.transaction_id:
                values["transaction_id"] = func.coalesce(
                    Order.transaction_id, event.transaction_id
                )

        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                or_(
                    Order.payment_status.is_(None),
                    Order.payment_status != PaymentStatus.COMPLETED.value,
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        result = await db.execute(stmt)
        await db.commit()
        applied = result.rowcount == 1

        order = await db.get(Order, order_id, populate_existing=True)
        if order is None:
            logger.warning(f"Reconciliation: order {order_id} not found ({event.provider})")
            raise OrderNotFound(order_id)

        if not applied:
            logger.info(
                f"Reconciliation: order {order_id} already completed, "
                f"{event.outcome.value} event from {event.provider} ignored"
            )
            return ReconciliationResult(order=order, applied=False, reason="already_completed")

        logger.info(
            f"Reconciliation: order {order_id} payment {event.outcome.value} "
            f"via {event.provider} (tx={order.transaction_id}, trusted={event.trusted})"
        )

        if event.outcome == PaymentStatus.COMPLETED and self._on_completed is not None:
            try:
                self._on_completed(order, event)
            except Exception:
                logger.exception(f"Reconciliation: completion hook failed for order {order_id}")

        return ReconciliationResult(order=order, applied=True)
