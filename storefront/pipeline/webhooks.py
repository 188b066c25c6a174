"""
Webhook Authentication and Dispatch
===================================
- WebhookAuthenticator: verifies the Stripe-Signature header against the
  exact request bytes, then parses the event. Nothing downstream ever sees
  an unverified payload.
- WebhookRouter: routes verified events by type; unknown types are
  acknowledged and dropped.
"""

from typing import Any, Awaitable, Callable, Optional

import pydantic
import stripe
import structlog

from storefront.config import stripe_config
from storefront.exceptions import AuthenticationError, ValidationError
from storefront.schemas.events import WebhookEvent


# =============================================================================
# AUTHENTICATION
# =============================================================================

class WebhookAuthenticator:
    """Shared-secret signature check over the raw request body"""

    def __init__(
        self,
        secret: str = stripe_config.WEBHOOK_SECRET,
        tolerance: int = stripe_config.WEBHOOK_TOLERANCE,
    ):
        self._secret = secret
        self._tolerance = tolerance
        self._logger = structlog.get_logger().bind(component="webhook_authenticator")

    def authenticate(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Verify and parse one delivery.

        Args:
            payload: Request body exactly as received
            signature: Value of the Stripe-Signature header

        Raises:
            AuthenticationError: missing or invalid signature
            ValidationError: signature valid but body is not a Stripe event
        """
        if not signature:
            self._logger.warning("webhook_signature_missing")
            raise AuthenticationError("Missing Stripe-Signature header")

        if not self._secret:
            self._logger.error("webhook_secret_not_configured")
            raise AuthenticationError("Webhook secret is not configured")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AuthenticationError("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                text, signature, self._secret, self._tolerance
            )
        except stripe.SignatureVerificationError as e:
            self._logger.warning("webhook_signature_invalid", error=str(e))
            raise AuthenticationError(f"Webhook signature verification failed: {e}") from e

        try:
            return WebhookEvent.model_validate_json(payload)
        except pydantic.ValidationError as e:
            self._logger.warning("webhook_payload_malformed", errors=e.error_count())
            raise ValidationError(
                "Webhook payload is not a valid event",
                {"errors": e.error_count()},
            ) from e


# =============================================================================
# DISPATCH
# =============================================================================

WebhookHandler = Callable[[WebhookEvent], Awaitable[Any]]


class WebhookRouter:
    """
    Routes verified events to handlers by type.
    Separates routing logic from business logic.
    """

    def __init__(self):
        self._handlers: dict[str, WebhookHandler] = {}
        self._logger = structlog.get_logger().bind(component="webhook_router")

    def register(self, event_type: str):
        """Decorator to register handler for event type"""
        def decorator(handler: WebhookHandler):
            self._handlers[event_type] = handler
            self._logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    async def route(self, event: WebhookEvent) -> Optional[Any]:
        """Route event to its handler; unhandled types return None"""
        handler = self._handlers.get(event.type)
        if not handler:
            self._logger.info("event_ignored", event_type=event.type, event_id=event.id)
            return None

        self._logger.info("event_dispatched", event_type=event.type, event_id=event.id)
        return await handler(event)

    @property
    def supported_events(self) -> list[str]:
        return list(self._handlers.keys())
