"""
Reconciliation Worker
=====================
Turns ``checkout.session.completed`` notifications into completed orders.

The webhook handler only enqueues a durable job, due after a short grace
period, and the HTTP response is sent right away. The job later:

1. retrieves the payment intent (latest charge expanded), bounded by a
   timeout
2. extracts the instrument metadata from the first charge
3. completes the matching order with one conditional write

Charge detail that is not there yet, processor errors, timeouts and store
failures are retried with exponential backoff; after ``max_attempts`` the
job is dead-lettered and the order stays pending. None of it reaches the
webhook response.
"""

import asyncio
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from storefront.config import reconciliation_config
from storefront.exceptions import ChargeDetailUnavailable, OrderNotFoundError, StoreError
from storefront.pipeline.webhooks import WebhookRouter
from storefront.schemas.events import (
    CHECKOUT_SESSION_COMPLETED,
    ReconciliationJob,
    WebhookEvent,
)
from storefront.schemas.orders import PaymentMethod, utcnow
from storefront.services.processor import IPaymentProcessor
from storefront.storage.jobs import IJobQueue
from storefront.storage.ledger import EventLedger
from storefront.storage.orders import IOrderRepository


class ReconciliationOutcome(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"


# =============================================================================
# PAYMENT DETAIL EXTRACTION
# =============================================================================

def first_charge(payment_intent: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    The charge backing a payment intent.

    Current API versions expose it as an expanded ``latest_charge``;
    older ones list it under ``charges.data``.
    """
    latest = payment_intent.get("latest_charge")
    if isinstance(latest, dict):
        return latest

    charges = (payment_intent.get("charges") or {}).get("data") or []
    return charges[0] if charges else None


def extract_payment_method(payment_intent: Dict[str, Any]) -> Optional[PaymentMethod]:
    charge = first_charge(payment_intent)
    if not charge:
        return None

    details = charge.get("payment_method_details")
    if not details:
        return None

    card = details.get("card") or {}
    return PaymentMethod(
        type=details.get("type"),
        brand=card.get("brand"),
        last4=card.get("last4"),
        country=card.get("country"),
    )


def _describe(error: Exception) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


# =============================================================================
# WORKER
# =============================================================================

class ReconciliationWorker:
    """
    Schedules and runs reconciliation jobs.

    Example:
        worker = ReconciliationWorker(orders, jobs, processor)
        worker.register(router)
        # webhook -> router -> worker.schedule(event)
        await worker.run_once()
    """

    def __init__(
        self,
        orders: IOrderRepository,
        jobs: IJobQueue,
        processor: IPaymentProcessor,
        grace_seconds: float = reconciliation_config.GRACE_SECONDS,
        detail_timeout: float = reconciliation_config.DETAIL_TIMEOUT,
        max_attempts: int = reconciliation_config.MAX_ATTEMPTS,
        backoff_base: float = reconciliation_config.BACKOFF_BASE,
        backoff_max: float = reconciliation_config.BACKOFF_MAX,
        batch_size: int = reconciliation_config.BATCH_SIZE,
        lease_seconds: float = reconciliation_config.LEASE_SECONDS,
        ledger: Optional[EventLedger] = None,
    ):
        self.orders = orders
        self.jobs = jobs
        self.processor = processor
        self.ledger = ledger

        self.grace_seconds = grace_seconds
        self.detail_timeout = detail_timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.batch_size = batch_size
        self.lease_seconds = lease_seconds

        self.metrics: dict[str, int] = {
            "scheduled": 0,
            "completed": 0,
            "already_completed": 0,
            "retried": 0,
            "dead_lettered": 0,
        }
        self._logger = structlog.get_logger().bind(component="reconciliation_worker")

    def register(self, router: WebhookRouter):
        """Register the session-completed handler"""

        @router.register(CHECKOUT_SESSION_COMPLETED)
        async def handle_checkout_completed(event: WebhookEvent):
            return await self.schedule(event)

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    async def schedule(self, event: WebhookEvent) -> bool:
        """
        Enqueue reconciliation for a completed session.

        Returns True if a job was enqueued, False if one already exists or
        the session carries no payment intent.
        """
        session = event.obj
        session_id = session.get("id")
        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")

        log = self._logger.bind(event_id=event.id, session_id=session_id)

        if not session_id or not payment_intent:
            log.warning("session_without_payment_intent")
            return False

        job = ReconciliationJob(
            session_id=session_id,
            payment_intent_id=payment_intent,
            event_id=event.id,
            next_run_at=utcnow() + timedelta(seconds=self.grace_seconds),
        )
        enqueued = await self.jobs.enqueue(job)

        if enqueued:
            self.metrics["scheduled"] += 1
            log.info("reconciliation_scheduled",
                     payment_intent_id=payment_intent,
                     run_at=job.next_run_at.isoformat())
        else:
            log.info("reconciliation_already_scheduled")
        return enqueued

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def backoff(self, attempts: int) -> float:
        """Delay before the next attempt, after `attempts` failures"""
        return min(self.backoff_max, self.backoff_base * 2 ** max(attempts - 1, 0))

    async def reconcile(self, job: ReconciliationJob) -> ReconciliationOutcome:
        """One attempt. Raises on anything that should be retried."""
        payment_intent = await asyncio.wait_for(
            self.processor.retrieve_payment_intent(job.payment_intent_id),
            timeout=self.detail_timeout,
        )

        payment_method = extract_payment_method(payment_intent)
        if payment_method is None:
            raise ChargeDetailUnavailable(job.payment_intent_id)

        transitioned = await self.orders.mark_completed(
            job.session_id,
            job.payment_intent_id,
            payment_method,
        )
        if transitioned:
            return ReconciliationOutcome.COMPLETED

        if await self.orders.get_by_session(job.session_id) is None:
            raise OrderNotFoundError(job.session_id)
        return ReconciliationOutcome.ALREADY_COMPLETED

    async def run_job(self, job: ReconciliationJob) -> Optional[ReconciliationOutcome]:
        """Run one claimed job and record its outcome. Never raises."""
        log = self._logger.bind(
            session_id=job.session_id,
            payment_intent_id=job.payment_intent_id,
            attempt=job.attempts,
        )

        try:
            outcome = await self.reconcile(job)
        except Exception as e:
            await self._handle_failure(job, e, log)
            return None

        self.metrics[outcome.value] += 1
        log.info(f"reconciliation_{outcome.value}")

        try:
            await self.jobs.complete(job.session_id)
        except StoreError as e:
            # Lease expiry re-runs the job; the order update is a no-op then.
            log.error("reconciliation_job_complete_failed", error=str(e))

        return outcome

    async def _handle_failure(self, job: ReconciliationJob, error: Exception, log):
        reason = _describe(error)

        try:
            if job.attempts >= self.max_attempts:
                await self.jobs.dead_letter(job.session_id, reason)
                self.metrics["dead_lettered"] += 1
                log.error("reconciliation_dead_lettered", error=reason)
                await self._forget_event(job, log)
                return

            delay = self.backoff(job.attempts)
            next_run_at = utcnow() + timedelta(seconds=delay)
            await self.jobs.retry(job.session_id, next_run_at, reason)
            self.metrics["retried"] += 1
            log.warning("reconciliation_retry_scheduled",
                        error=reason,
                        retry_in=delay,
                        next_run_at=next_run_at.isoformat())
        except StoreError as e:
            log.error("reconciliation_queue_update_failed",
                      error=reason,
                      queue_error=str(e))

    async def _forget_event(self, job: ReconciliationJob, log):
        """Let a redelivery of the originating event re-arm the dead job"""
        if self.ledger is None or not job.event_id:
            return
        await self.ledger.release(job.event_id)
        log.info("webhook_event_released", event_id=job.event_id)

    async def run_once(self) -> int:
        """Claim a batch of due jobs and run them concurrently"""
        batch = await self.jobs.claim_due(self.batch_size, self.lease_seconds)
        if batch:
            await asyncio.gather(*(self.run_job(job) for job in batch))
        return len(batch)
