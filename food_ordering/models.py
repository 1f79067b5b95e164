"""
SQLAlchemy Database Models

The order record and the enums that drive its two state machines:
fulfillment (``status``) and payment (``payment_status``).
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Float, DateTime, Enum, JSON
from sqlalchemy.sql import func

from food_ordering.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return uuid.uuid4().hex


class OrderStatus(str, enum.Enum):
    """Fulfillment workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Fulfillment transitions an administrator may apply.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PREPARING,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PREPARING: frozenset({
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.COMPLETED,
    }),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class PaymentStatus(str, enum.Enum):
    """Payment state; ``None`` on the order means no attempt yet."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    """Supported payment providers."""
    STRIPE = "stripe"
    SSLCOMMERZ = "sslcommerz"


class Order(Base):
    """
    A purchase request with snapshotted items, a delivery address and
    payment/fulfillment state.

    ``items`` is a JSON list of
    ``{"menu_item", "quantity", "price", "name", "image"}`` captured at
    creation time; prices are never re-read from the catalog afterwards.
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=new_order_id)
    owner_id = Column(String(64), nullable=False, index=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)
    delivery_address = Column(JSON, nullable=False)

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_method = Column(String(20), nullable=False)
    transaction_id = Column(String(64), nullable=True, index=True)
    payment_status = Column(String(20), nullable=True, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED.value

    def __repr__(self):
        return f"<Order #{self.id} - {self.owner_id} - {self.status.value} - {self.payment_status}>"
