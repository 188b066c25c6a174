"""
Storefront Exception Hierarchy

Every error carries a stable error code and maps to one HTTP status.
Synchronous request paths let these propagate to the API layer; the
reconciliation worker catches them and decides between retry and
dead-letter.
"""
from typing import Optional, Dict, Any


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(StorefrontError):
    """
    Malformed checkout request or event body.

    Examples:
    - Empty product list
    - Non-positive price or quantity
    - Price finer than the currency's minor unit
    """

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("checkout:validation", message, details)


class AuthenticationError(StorefrontError):
    """
    Webhook signature verification failed.

    The payload must never be processed when this is raised.
    """

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("webhook:authentication", message, details)


class UpstreamError(StorefrontError):
    """Payment processor rejected or failed a call."""

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("processor:upstream", message, details)


class StoreError(StorefrontError):
    """Persistence failure."""

    status_code = 503

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "store:failure"
    ):
        super().__init__(error_code, message, details)


class OrderNotFoundError(StoreError):
    """No order exists for the given checkout session."""

    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(
            f"No order for session {session_id}",
            {"session_id": session_id},
            error_code="store:order_not_found"
        )


class ChargeDetailUnavailable(StorefrontError):
    """
    Payment intent has no charge detail yet.

    Recoverable: Stripe attaches the charge shortly after the session
    completes, so the reconciliation job is retried.
    """

    def __init__(self, payment_intent_id: str):
        super().__init__(
            "processor:charge_unavailable",
            f"No charge detail for payment intent {payment_intent_id}",
            {"payment_intent_id": payment_intent_id}
        )
