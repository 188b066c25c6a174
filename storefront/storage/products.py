"""
Product Catalog
===============
Schemaless product documents with insertion-ordered paging.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from storefront.database import Database


class IProductRepository(ABC):
    """Catalog repository interface"""

    @abstractmethod
    async def insert(self, document: Dict[str, Any]) -> str:
        """Store a document, return its id"""
        pass

    @abstractmethod
    async def list(self, skip: int, limit: int) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class InMemoryProductRepository(IProductRepository):
    """Ordered in-memory catalog"""

    def __init__(self):
        self._documents: list[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def insert(self, document: Dict[str, Any]) -> str:
        product_id = str(uuid.uuid4())
        async with self._lock:
            self._documents.append({**document, "_id": product_id})
        return product_id

    async def list(self, skip: int, limit: int) -> List[Dict[str, Any]]:
        async with self._lock:
            return [dict(d) for d in self._documents[skip:skip + limit]]

    async def count(self) -> int:
        async with self._lock:
            return len(self._documents)


class PostgresProductRepository(IProductRepository):
    """Products table (JSONB documents)"""

    def __init__(self, database: Database):
        self._db = database

    async def insert(self, document: Dict[str, Any]) -> str:
        product_id = await self._db.fetch_val(
            "INSERT INTO products (document) VALUES ($1) RETURNING id",
            document
        )
        return str(product_id)

    async def list(self, skip: int, limit: int) -> List[Dict[str, Any]]:
        rows = await self._db.fetch_all(
            """
            SELECT id, document FROM products
            ORDER BY created_at, id
            OFFSET $1 LIMIT $2
            """,
            skip,
            limit
        )
        return [{**row["document"], "_id": str(row["id"])} for row in rows]

    async def count(self) -> int:
        return await self._db.fetch_val("SELECT COUNT(*) FROM products")
