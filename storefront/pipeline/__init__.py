# Pipeline
# ========
# Webhook authentication, event dispatch and order reconciliation

from .webhooks import (
    WebhookAuthenticator,
    WebhookRouter,
)
from .reconciliation import (
    ReconciliationOutcome,
    ReconciliationWorker,
    extract_payment_method,
    first_charge,
)

__all__ = [
    "WebhookAuthenticator",
    "WebhookRouter",
    "ReconciliationOutcome",
    "ReconciliationWorker",
    "extract_payment_method",
    "first_charge",
]
