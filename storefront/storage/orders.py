"""
Order Store
===========
Durable keyed storage for orders, addressed by checkout session id.

The only mutation after insert is ``mark_completed``: a single write that
applies only while the order is still pending. Duplicate or concurrent
completions therefore resolve to one transition and no-ops, and a
completed order is never rewritten.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from storefront.database import Database
from storefront.exceptions import StoreError
from storefront.schemas.orders import Order, OrderStatus, PaymentMethod


UNIQUE_VIOLATION = "23505"


# =============================================================================
# INTERFACE
# =============================================================================

class IOrderRepository(ABC):
    """Order-specific repository interface"""

    @abstractmethod
    async def insert(self, order: Order) -> Order:
        """Insert a new order. Duplicate session ids raise StoreError."""
        pass

    @abstractmethod
    async def get_by_session(self, session_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def mark_completed(
        self,
        session_id: str,
        payment_intent_id: str,
        payment_method: PaymentMethod,
    ) -> bool:
        """
        Transition a pending order to completed.

        Returns True if this call performed the transition, False if no
        pending order matched (already completed, or unknown session).
        """
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryOrderRepository(IOrderRepository):
    """Task-safe in-memory order repository"""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def insert(self, order: Order) -> Order:
        async with self._lock:
            if order.session_id in self._orders:
                raise StoreError(
                    f"Order already exists for session {order.session_id}",
                    {"session_id": order.session_id},
                )
            self._orders[order.session_id] = order.model_copy(deep=True)
            return order

    async def get_by_session(self, session_id: str) -> Optional[Order]:
        async with self._lock:
            order = self._orders.get(session_id)
            return order.model_copy(deep=True) if order else None

    async def mark_completed(
        self,
        session_id: str,
        payment_intent_id: str,
        payment_method: PaymentMethod,
    ) -> bool:
        async with self._lock:
            order = self._orders.get(session_id)
            if order is None or order.status != OrderStatus.PENDING:
                return False

            self._orders[session_id] = order.model_copy(update={
                "status": OrderStatus.COMPLETED,
                "payment_intent_id": payment_intent_id,
                "payment_method": payment_method.model_copy(),
            })
            return True

    def __len__(self) -> int:
        return len(self._orders)


# =============================================================================
# POSTGRES IMPLEMENTATION
# =============================================================================

class PostgresOrderRepository(IOrderRepository):
    """Orders table backed by the shared asyncpg pool"""

    def __init__(self, database: Database):
        self._db = database

    async def insert(self, order: Order) -> Order:
        try:
            await self._db.execute(
                """
                INSERT INTO orders
                (session_id, products, total_amount, customer_details, status, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                order.session_id,
                [p.model_dump(mode="json") for p in order.products],
                order.total_amount,
                order.customer_details,
                order.status.value,
                order.created_at,
            )
        except StoreError as e:
            if e.details.get("sqlstate") == UNIQUE_VIOLATION:
                raise StoreError(
                    f"Order already exists for session {order.session_id}",
                    {"session_id": order.session_id},
                ) from e
            raise

        return order

    async def get_by_session(self, session_id: str) -> Optional[Order]:
        row = await self._db.fetch_one(
            "SELECT * FROM orders WHERE session_id = $1",
            session_id
        )
        if row is None:
            return None

        return Order(
            session_id=row["session_id"],
            products=row["products"],
            total_amount=row["total_amount"],
            customer_details=row["customer_details"] or {},
            status=row["status"],
            payment_intent_id=row["payment_intent_id"],
            payment_method=row["payment_method"],
            created_at=row["created_at"],
        )

    async def mark_completed(
        self,
        session_id: str,
        payment_intent_id: str,
        payment_method: PaymentMethod,
    ) -> bool:
        result = await self._db.execute(
            """
            UPDATE orders
            SET status = 'completed',
                payment_intent_id = $2,
                payment_method = $3,
                updated_at = NOW()
            WHERE session_id = $1 AND status = 'pending'
            """,
            session_id,
            payment_intent_id,
            payment_method.model_dump(),
        )
        return result == "UPDATE 1"
