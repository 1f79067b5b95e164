"""
Services module initialization.
Order lifecycle, checkout, payment reconciliation and the payment ledger.
"""

from food_ordering.services.checkout import start_payment_session
from food_ordering.services.orders import OrderService
from food_ordering.services.reconciliation import (
    ReconciliationEngine,
    ReconciliationResult,
    payment_summary,
)

__all__ = [
    "OrderService",
    "ReconciliationEngine",
    "ReconciliationResult",
    "payment_summary",
    "start_payment_session",
]
