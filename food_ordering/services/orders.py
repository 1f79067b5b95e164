"""
Order Lifecycle Service

Creation, lookup, status changes, cancellation and deletion of orders.
Every operation checks the caller's identity/role before it touches a
record. Payment fields are not written here; see checkout and
reconciliation.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from food_ordering.auth import CurrentUser
from food_ordering.core.config import get_settings
from food_ordering.core.exceptions import (
    Forbidden,
    InvalidStateTransition,
    OrderNotFound,
    ValidationError,
)
from food_ordering.models import ALLOWED_TRANSITIONS, Order, OrderStatus
from food_ordering.schemas import OrderCreate
from food_ordering.services.payment.base import amounts_match

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("street", "city", "state", "zip_code")

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def utc_weekday(value: datetime) -> int:
    """Weekday of a timestamp in UTC; naive values are already UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.weekday()


def compute_total(payload: OrderCreate) -> float:
    """Items at their snapshotted prices plus the delivery fee."""
    subtotal = sum(item.quantity * item.price for item in payload.items)
    return round(subtotal + payload.delivery_fee, 2)


def validate_order_payload(payload: OrderCreate, tolerance: float) -> None:
    """
    Reject incomplete or tampered order requests.

    Raises:
        ValidationError: With a message naming the first problem found
    """
    if not payload.items:
        raise ValidationError("Items array is required and cannot be empty")

    if payload.total is None or payload.total <= 0:
        raise ValidationError("Valid total amount is required")

    address = payload.delivery_address
    if address is None:
        raise ValidationError("Complete delivery address is required")

    missing = [
        name for name in REQUIRED_ADDRESS_FIELDS
        if not (getattr(address, name) or "").strip()
    ]
    if missing:
        raise ValidationError(
            f"Complete delivery address is required (missing: {', '.join(missing)})"
        )

    if payload.payment_method is None:
        raise ValidationError("Payment method is required")

    expected = compute_total(payload)
    if not amounts_match(payload.total, expected, tolerance):
        raise ValidationError(
            f"Order total {payload.total:.2f} does not match items and delivery fee ({expected:.2f})"
        )


class OrderService:
    """
    Order operations bound to one database session.

    Example:
        >>> service = OrderService(db)
        >>> order = await service.create(user.user_id, payload)
        >>> await service.cancel(order.id, user)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def _load(self, order_id: str) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def _load_for(self, order_id: str, caller: CurrentUser) -> Order:
        order = await self._load(order_id)
        if not caller.can_access(order.owner_id):
            logger.warning(f"User {caller.user_id} denied access to order {order_id}")
            raise Forbidden("Access denied")
        return order

    @staticmethod
    def _require_admin(caller: CurrentUser) -> None:
        if not caller.is_admin:
            raise Forbidden("Access denied")

    async def create(self, owner_id: str, payload: OrderCreate) -> Order:
        """Validate and persist a new pending order."""
        validate_order_payload(payload, self.settings.total_tolerance)

        address = payload.delivery_address
        order = Order(
            owner_id=owner_id,
            items=[
                {
                    "menu_item": item.menu_item,
                    "quantity": item.quantity,
                    "price": item.price,
                    "name": item.name,
                    "image": item.image,
                }
                for item in payload.items
            ],
            delivery_fee=payload.delivery_fee,
            total=round(payload.total, 2),
            delivery_address={
                "street": address.street.strip(),
                "city": address.city.strip(),
                "state": address.state.strip(),
                "zip_code": address.zip_code.strip(),
                "name": address.name,
            },
            payment_method=payload.payment_method.value,
            status=OrderStatus.PENDING,
        )

        self.db.add(order)
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(
            f"Order {order.id} created for user {owner_id} "
            f"({len(order.items)} items, total {order.total:.2f}, {order.payment_method})"
        )
        return order

    async def get(self, order_id: str, caller: CurrentUser) -> Order:
        """Admin or owner only."""
        return await self._load_for(order_id, caller)

    async def list_all(self, caller: CurrentUser) -> list[Order]:
        """Every order, newest first. Admin only."""
        self._require_admin(caller)
        result = await self.db.execute(select(Order).order_by(Order.created_at.desc()))
        return list(result.scalars().all())

    async def list_mine(self, caller: CurrentUser) -> list[Order]:
        """The caller's own orders, newest first."""
        result = await self.db.execute(
            select(Order)
            .where(Order.owner_id == caller.user_id)
            .order_by(Order.created_at.desc())
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        caller: CurrentUser,
    ) -> Order:
        """Admin-only fulfillment change, checked against ALLOWED_TRANSITIONS."""
        self._require_admin(caller)
        order = await self._load(order_id)

        if new_status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidStateTransition(
                f"Cannot move order from {order.status.value} to {new_status.value}"
            )

        previous = order.status
        order.status = new_status
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(f"Order {order_id} status {previous.value} -> {new_status.value}")
        return order

    async def cancel(self, order_id: str, caller: CurrentUser) -> Order:
        """Owner or admin; only while the order is pending."""
        order = await self._load_for(order_id, caller)

        if order.status != OrderStatus.PENDING:
            raise InvalidStateTransition("Cannot cancel order in current status")

        order.status = OrderStatus.CANCELLED
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(f"Order {order_id} cancelled by {caller.user_id}")
        return order

    async def delete(self, order_id: str, caller: CurrentUser) -> None:
        """Owner or admin; only cancelled orders can be deleted."""
        order = await self._load_for(order_id, caller)

        if order.status != OrderStatus.CANCELLED:
            raise InvalidStateTransition("Only cancelled orders can be deleted")

        await self.db.delete(order)
        await self.db.commit()

        logger.info(f"Order {order_id} deleted by {caller.user_id}")

    async def stats(self, caller: CurrentUser) -> dict[str, float]:
        """Order count and revenue over non-cancelled orders. Admin only."""
        self._require_admin(caller)

        result = await self.db.execute(
            select(func.count(Order.id), func.coalesce(func.sum(Order.total), 0.0))
            .where(Order.status != OrderStatus.CANCELLED)
        )
        total_orders, total_revenue = result.one()

        return {
            "total_orders": int(total_orders),
            "total_revenue": round(float(total_revenue), 2),
        }

    async def weekly_sales(
        self,
        caller: CurrentUser,
        now: Optional[datetime] = None,
    ) -> list[dict[str, float]]:
        """
        Non-cancelled sales of the last seven days (today included),
        summed per weekday and listed Monday first. Admin only.
        """
        self._require_admin(caller)

        now = now or datetime.now(timezone.utc)
        start = (now - timedelta(days=6)).replace(hour=0, minute=0, second=0, microsecond=0)

        result = await self.db.execute(
            select(Order.created_at, Order.total).where(
                Order.created_at >= start,
                Order.status != OrderStatus.CANCELLED,
            )
        )

        totals = [0.0] * 7
        for created_at, total in result.all():
            totals[utc_weekday(created_at)] += total

        return [
            {"name": name, "sales": round(totals[i], 2)}
            for i, name in enumerate(WEEKDAYS)
        ]
