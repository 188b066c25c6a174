# Schemas
# =======
# Pydantic models shared by the API, storage and reconciliation layers

from .orders import (
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSession,
    Order,
    OrderStatus,
    PaymentMethod,
    ProductLine,
)
from .events import (
    CHECKOUT_SESSION_COMPLETED,
    JobStatus,
    ReconciliationJob,
    WebhookEvent,
)

__all__ = [
    # Orders
    "CheckoutRequest",
    "CheckoutResponse",
    "CheckoutSession",
    "Order",
    "OrderStatus",
    "PaymentMethod",
    "ProductLine",
    # Events
    "CHECKOUT_SESSION_COMPLETED",
    "JobStatus",
    "ReconciliationJob",
    "WebhookEvent",
]
