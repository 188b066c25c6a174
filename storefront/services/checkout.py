"""
Checkout Intent Service
=======================
Turns a cart into a Stripe Checkout session plus a pending order.

Order of effects matters: the session is opened first and the order is
inserted only after Stripe accepted it, so a processor failure never
leaves a pending order without a session behind it. Processor failures
propagate to the caller unretried.
"""

from decimal import Decimal
from typing import Any, Dict, List

import structlog

from storefront.config import stripe_config
from storefront.exceptions import StoreError, ValidationError
from storefront.schemas.orders import CheckoutSession, Order, ProductLine
from storefront.services.processor import IPaymentProcessor
from storefront.storage.orders import IOrderRepository


def to_minor_units(price: Decimal) -> int:
    """Dollars to cents; sub-cent prices are rejected rather than rounded."""
    cents = price * 100
    if cents != cents.to_integral_value():
        raise ValidationError(
            f"Price {price} is finer than the currency's smallest unit",
            {"price": str(price)},
        )
    return int(cents)


def validate_products(products: List[ProductLine]):
    if not products:
        raise ValidationError("Checkout requires at least one product")

    for index, product in enumerate(products):
        if not product.price.is_finite() or product.price <= 0:
            raise ValidationError(
                f"Product '{product.name}' must have a positive price",
                {"index": index, "price": str(product.price)},
            )
        if product.quantity <= 0:
            raise ValidationError(
                f"Product '{product.name}' must have a positive quantity",
                {"index": index, "quantity": product.quantity},
            )


def build_line_items(products: List[ProductLine], currency: str) -> List[Dict[str, Any]]:
    return [
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": product.name},
                "unit_amount": to_minor_units(product.price),
            },
            "quantity": product.quantity,
        }
        for product in products
    ]


def compute_total(products: List[ProductLine]) -> Decimal:
    return sum((product.subtotal for product in products), Decimal("0"))


class CheckoutService:
    """Creates checkout sessions and their pending orders"""

    def __init__(
        self,
        orders: IOrderRepository,
        processor: IPaymentProcessor,
        currency: str = stripe_config.CURRENCY,
    ):
        self.orders = orders
        self.processor = processor
        self.currency = currency
        self._logger = structlog.get_logger().bind(component="checkout_service")

    async def create_checkout(
        self,
        products: List[ProductLine],
        customer_details: Dict[str, Any],
    ) -> CheckoutSession:
        validate_products(products)
        line_items = build_line_items(products, self.currency)
        total = compute_total(products)

        self._logger.info("checkout_initiated",
                          line_items=len(line_items),
                          total_amount=str(total))

        session = await self.processor.create_checkout_session(line_items)

        order = Order(
            session_id=session.id,
            products=products,
            total_amount=total,
            customer_details=customer_details,
        )
        try:
            await self.orders.insert(order)
        except StoreError as e:
            # The Stripe session exists but has no order; it expires unpaid.
            self._logger.error("order_insert_failed",
                               session_id=session.id,
                               error=str(e))
            raise

        self._logger.info("order_created",
                          session_id=session.id,
                          total_amount=str(total),
                          status=order.status.value)
        return session
