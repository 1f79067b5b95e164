"""
                Food Ordering Backend

Order placement, order lifecycle management and payment capture
(Stripe + SSLCommerz) with idempotent payment reconciliation.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
