"""
Payment Processor Adapter
=========================
Thin async wrapper over the Stripe SDK.

The SDK is synchronous, so every call runs in a worker thread and never
blocks the event loop. Stripe errors are translated into UpstreamError.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List

import stripe
import structlog

from storefront.config import stripe_config
from storefront.exceptions import UpstreamError
from storefront.schemas.orders import CheckoutSession


class IPaymentProcessor(ABC):
    """Outbound calls the checkout and reconciliation paths depend on"""

    @abstractmethod
    async def create_checkout_session(self, line_items: List[Dict[str, Any]]) -> CheckoutSession:
        pass

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """Payment intent with its latest charge expanded"""
        pass


class StripeProcessor(IPaymentProcessor):
    """Stripe Checkout and PaymentIntent API"""

    def __init__(
        self,
        api_key: str = stripe_config.SECRET_KEY,
        success_url: str = stripe_config.SUCCESS_URL,
        cancel_url: str = stripe_config.CANCEL_URL,
    ):
        self._api_key = api_key
        self.success_url = success_url
        self.cancel_url = cancel_url
        self._logger = structlog.get_logger().bind(component="stripe_processor")

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def create_checkout_session(self, line_items: List[Dict[str, Any]]) -> CheckoutSession:
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self._api_key,
                payment_method_types=["card"],
                line_items=line_items,
                mode="payment",
                success_url=self.success_url,
                cancel_url=self.cancel_url,
            )
        except stripe.StripeError as e:
            self._logger.error("checkout_session_failed",
                               error=str(e),
                               error_type=type(e).__name__)
            raise UpstreamError(
                f"Stripe rejected checkout session: {e}",
                {"stripe_code": e.code},
            ) from e

        self._logger.info("checkout_session_created", stripe_session_id=session.id)
        return CheckoutSession(id=session.id, url=session.url)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve,
                payment_intent_id,
                api_key=self._api_key,
                expand=["latest_charge"],
            )
        except stripe.StripeError as e:
            self._logger.warning("payment_intent_retrieve_failed",
                                 payment_intent_id=payment_intent_id,
                                 error=str(e),
                                 error_type=type(e).__name__)
            raise UpstreamError(
                f"Stripe payment intent retrieval failed: {e}",
                {"payment_intent_id": payment_intent_id, "stripe_code": e.code},
            ) from e

        return intent.to_dict()
