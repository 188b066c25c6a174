# storage/__init__.py
# ============================================================================
# STOREFRONT — STORAGE MODULE
# ============================================================================
# Repositories (in-memory and PostgreSQL) and the webhook event ledger
# ============================================================================

from storefront.storage.orders import (
    IOrderRepository,
    InMemoryOrderRepository,
    PostgresOrderRepository,
)
from storefront.storage.products import (
    IProductRepository,
    InMemoryProductRepository,
    PostgresProductRepository,
)
from storefront.storage.jobs import (
    IJobQueue,
    InMemoryJobQueue,
    PostgresJobQueue,
)
from storefront.storage.ledger import EventLedger

__all__ = [
    "IOrderRepository",
    "InMemoryOrderRepository",
    "PostgresOrderRepository",
    "IProductRepository",
    "InMemoryProductRepository",
    "PostgresProductRepository",
    "IJobQueue",
    "InMemoryJobQueue",
    "PostgresJobQueue",
    "EventLedger",
]
