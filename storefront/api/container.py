"""
Service Container
=================
Wires repositories, the event ledger, the payment processor and the
reconciliation worker into one object owned by the application.

Production uses PostgreSQL, Redis and Stripe; tests and local runs use
``build_in_memory_services`` with a substitute processor.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from storefront.config import reconciliation_config
from storefront.database import Database
from storefront.pipeline.reconciliation import ReconciliationWorker
from storefront.pipeline.webhooks import WebhookAuthenticator, WebhookRouter
from storefront.services.checkout import CheckoutService
from storefront.services.processor import IPaymentProcessor, StripeProcessor
from storefront.storage.jobs import IJobQueue, InMemoryJobQueue, PostgresJobQueue
from storefront.storage.ledger import EventLedger
from storefront.storage.orders import (
    InMemoryOrderRepository,
    IOrderRepository,
    PostgresOrderRepository,
)
from storefront.storage.products import (
    InMemoryProductRepository,
    IProductRepository,
    PostgresProductRepository,
)
from storefront.tasks.reconciliation_loop import ReconciliationLoop

logger = structlog.get_logger(component="services")


@dataclass
class Services:
    orders: IOrderRepository
    products: IProductRepository
    jobs: IJobQueue
    ledger: EventLedger
    processor: IPaymentProcessor
    authenticator: WebhookAuthenticator
    router: WebhookRouter
    checkout: CheckoutService
    worker: ReconciliationWorker
    loop: ReconciliationLoop
    database: Optional[Database] = None

    async def startup(self):
        """Open the pool and the ledger, then start polling"""
        if self.database is not None:
            await self.database.connect()
        await self.ledger.connect()
        self.loop.start()

    async def shutdown(self):
        """Reverse of startup; the pool is closed last"""
        await self.loop.stop()
        await self.ledger.close()
        if self.database is not None:
            await self.database.close()


def _assemble(
    orders: IOrderRepository,
    products: IProductRepository,
    jobs: IJobQueue,
    ledger: EventLedger,
    processor: IPaymentProcessor,
    authenticator: WebhookAuthenticator,
    database: Optional[Database] = None,
    loop_options: Optional[Dict[str, Any]] = None,
    worker_options: Optional[Dict[str, Any]] = None,
) -> Services:
    router = WebhookRouter()
    worker = ReconciliationWorker(
        orders, jobs, processor, ledger=ledger, **(worker_options or {})
    )
    worker.register(router)

    return Services(
        orders=orders,
        products=products,
        jobs=jobs,
        ledger=ledger,
        processor=processor,
        authenticator=authenticator,
        router=router,
        checkout=CheckoutService(orders, processor),
        worker=worker,
        loop=ReconciliationLoop(worker, **(loop_options or {})),
        database=database,
    )


def build_services() -> Services:
    """Production wiring from environment configuration"""
    database = Database()
    processor = StripeProcessor()
    if not processor.configured:
        logger.warning("stripe_secret_key_missing")

    return _assemble(
        orders=PostgresOrderRepository(database),
        products=PostgresProductRepository(database),
        jobs=PostgresJobQueue(database),
        ledger=EventLedger(),
        processor=processor,
        authenticator=WebhookAuthenticator(),
        database=database,
    )


def build_in_memory_services(
    processor: IPaymentProcessor,
    webhook_secret: str,
    reconcile_in_background: bool = False,
    poll_interval: float = reconciliation_config.POLL_INTERVAL,
    **worker_options,
) -> Services:
    """
    Single-process wiring with no external stores.

    The background loop is off by default so callers can drive
    reconciliation with ``services.worker.run_once()``.
    """
    return _assemble(
        orders=InMemoryOrderRepository(),
        products=InMemoryProductRepository(),
        jobs=InMemoryJobQueue(),
        ledger=EventLedger(redis_url=None),
        processor=processor,
        authenticator=WebhookAuthenticator(secret=webhook_secret),
        loop_options={"enabled": reconcile_in_background, "poll_interval": poll_interval},
        worker_options=worker_options,
    )
