"""
Order Schemas
=============
Domain records and HTTP payloads for checkout.

HTTP bodies are camelCase (``customerDetails``, ``totalAmount``); Python
attributes are snake_case. Models accept either form on input.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# =============================================================================
# DOMAIN MODELS
# =============================================================================

class ProductLine(CamelModel):
    """One cart line as priced by the caller"""
    name: str
    price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class PaymentMethod(CamelModel):
    """Instrument metadata copied from the first charge"""
    type: Optional[str] = None
    brand: Optional[str] = None
    last4: Optional[str] = None
    country: Optional[str] = None


class Order(CamelModel):
    """Authoritative record of one checkout attempt, keyed by session id"""
    session_id: str
    products: List[ProductLine]
    total_amount: Decimal
    customer_details: Dict[str, Any] = Field(default_factory=dict)

    status: OrderStatus = OrderStatus.PENDING
    payment_intent_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None

    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_completed(self) -> bool:
        return self.status == OrderStatus.COMPLETED


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class CheckoutRequest(CamelModel):
    """Body of POST /create-payment-intent"""
    products: List[ProductLine] = Field(default_factory=list)
    customer_details: Dict[str, Any] = Field(default_factory=dict)


class CheckoutResponse(BaseModel):
    """Session reference handed back to the browser"""
    id: str
    url: Optional[str] = None


class CheckoutSession(BaseModel):
    """What the processor returns when a session is opened"""
    id: str
    url: Optional[str] = None
