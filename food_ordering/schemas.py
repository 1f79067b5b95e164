"""
Pydantic Schemas for Request/Response Validation

Wire format uses camelCase keys (``deliveryAddress``, ``paymentMethod``,
``orderId``); Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Optional, List, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from food_ordering.models import OrderStatus, PaymentMethod


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

class OrderItemIn(CamelModel):
    """Single item in an order, priced at purchase time."""
    menu_item: Optional[str] = Field(None, examples=["65f1c0ffee"])
    quantity: int = Field(..., ge=1, examples=[2])
    price: float = Field(..., ge=0, examples=[7.99])
    name: str = Field(..., min_length=1, max_length=100, examples=["Chicken Biryani"])
    image: Optional[str] = Field(None, max_length=500)

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.price, 2)


class DeliveryAddress(CamelModel):
    """
    Delivery address. The four core fields are checked by the order
    service so that a missing one is reported as a domain validation error.
    """
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    name: Optional[str] = None


class OrderCreate(CamelModel):
    """Request schema for creating a new order."""
    items: List[OrderItemIn] = Field(default_factory=list)
    total: Optional[float] = Field(None, examples=[23.97])
    delivery_fee: float = Field(default=0.0, ge=0)
    delivery_address: Optional[DeliveryAddress] = None
    payment_method: Optional[PaymentMethod] = Field(None, examples=["stripe"])


class OrderStatusUpdate(CamelModel):
    status: OrderStatus


# =============================================================================
# PAYMENT REQUEST SCHEMAS
# =============================================================================

class CustomerInfo(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class CreateSessionRequest(CamelModel):
    order_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)


class StripeVerifyRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)


class SSLCommerzVerifyRequest(CamelModel):
    transaction_id: str = Field(..., min_length=1)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderResponse(CamelModel):
    """Response schema for a single order."""
    id: str
    owner_id: str
    items: List[dict[str, Any]]
    delivery_fee: float
    total: float
    delivery_address: dict[str, Any]
    payment_method: str
    transaction_id: Optional[str] = None
    payment_status: Optional[str] = None
    paid_at: Optional[datetime] = None
    status: OrderStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SessionResponse(CamelModel):
    """Response after starting a provider checkout session."""
    success: bool = True
    transaction_id: str
    session_id: Optional[str] = None
    url: Optional[str] = None
    redirect_url: Optional[str] = None


class VerifyResponse(CamelModel):
    success: bool
    order: Optional[OrderResponse] = None
    status: Optional[str] = None
    message: Optional[str] = None


class OrderStatsResponse(CamelModel):
    total_orders: int
    total_revenue: float


class WeeklySalesEntry(CamelModel):
    name: str
    sales: float


class MessageResponse(CamelModel):
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    message: str
    code: str


class HealthResponse(CamelModel):
    """Health check response."""
    status: str
    database: str
    payment_providers: dict[str, str]
    timestamp: datetime
