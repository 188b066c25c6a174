"""
Event Schemas
=============
Verified Stripe webhook events and the durable reconciliation jobs they
produce.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront.schemas.orders import utcnow


CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class EventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    obj: Dict[str, Any] = Field(alias="object")


class WebhookEvent(BaseModel):
    """Stripe event envelope, parsed only after signature verification"""
    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False
    data: EventData

    @property
    def obj(self) -> Dict[str, Any]:
        return self.data.obj


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    DEAD = "dead"


class ReconciliationJob(BaseModel):
    """Pending payment-detail retrieval for one checkout session"""
    session_id: str
    payment_intent_id: str
    event_id: Optional[str] = None

    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    next_run_at: datetime = Field(default_factory=utcnow)
    locked_until: Optional[datetime] = None
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
