# services/__init__.py
# ============================================================================
# STOREFRONT — SERVICES MODULE
# ============================================================================
# Payment processor adapter and checkout session creation
# ============================================================================

from storefront.services.processor import (
    IPaymentProcessor,
    StripeProcessor,
)
from storefront.services.checkout import (
    CheckoutService,
    build_line_items,
    compute_total,
    to_minor_units,
    validate_products,
)

__all__ = [
    # Processor
    "IPaymentProcessor",
    "StripeProcessor",
    # Checkout
    "CheckoutService",
    "build_line_items",
    "compute_total",
    "to_minor_units",
    "validate_products",
]
