"""
Reconciliation Queue
====================
Durable work queue keyed by checkout session id.

Delivery is at-least-once: a claimed job carries a lease, and a job whose
lease expires without being completed (worker crash, process restart) is
claimed again. Jobs that keep failing end in the ``dead`` state, where
they stay visible until an operator requeues them or the processor
redelivers the notification.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from storefront.database import Database
from storefront.schemas.events import JobStatus, ReconciliationJob
from storefront.schemas.orders import utcnow


# =============================================================================
# INTERFACE
# =============================================================================

class IJobQueue(ABC):
    """Reconciliation queue interface"""

    @abstractmethod
    async def enqueue(self, job: ReconciliationJob) -> bool:
        """
        Add a job for its session.

        Returns False when a live job already exists for the session.
        A dead-lettered job is re-armed by a new enqueue.
        """
        pass

    @abstractmethod
    async def claim_due(self, limit: int, lease_seconds: float) -> List[ReconciliationJob]:
        """Mark due jobs running, bump their attempt count, return them."""
        pass

    @abstractmethod
    async def complete(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def retry(self, session_id: str, next_run_at: datetime, error: str) -> None:
        pass

    @abstractmethod
    async def dead_letter(self, session_id: str, error: str) -> None:
        pass

    @abstractmethod
    async def requeue(self, session_id: str) -> bool:
        """Re-arm a dead job for immediate processing."""
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[ReconciliationJob]:
        pass

    @abstractmethod
    async def list_dead(self, limit: int = 100) -> List[ReconciliationJob]:
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryJobQueue(IJobQueue):
    """Single-process queue for tests and local runs"""

    def __init__(self):
        self._jobs: dict[str, ReconciliationJob] = {}
        self._lock = asyncio.Lock()

    async def enqueue(self, job: ReconciliationJob) -> bool:
        async with self._lock:
            existing = self._jobs.get(job.session_id)
            if existing and existing.status != JobStatus.DEAD:
                return False
            self._jobs[job.session_id] = job.model_copy(update={
                "status": JobStatus.QUEUED,
                "attempts": 0,
            })
            return True

    async def claim_due(self, limit: int, lease_seconds: float) -> List[ReconciliationJob]:
        now = utcnow()
        async with self._lock:
            due = sorted(
                (
                    j for j in self._jobs.values()
                    if (j.status == JobStatus.QUEUED and j.next_run_at <= now)
                    or (j.status == JobStatus.RUNNING
                        and j.locked_until is not None
                        and j.locked_until < now)
                ),
                key=lambda j: j.next_run_at,
            )[:limit]

            claimed = []
            for job in due:
                updated = job.model_copy(update={
                    "status": JobStatus.RUNNING,
                    "attempts": job.attempts + 1,
                    "locked_until": now + timedelta(seconds=lease_seconds),
                    "updated_at": now,
                })
                self._jobs[job.session_id] = updated
                claimed.append(updated.model_copy())
            return claimed

    async def _update(self, session_id: str, **changes) -> None:
        async with self._lock:
            job = self._jobs.get(session_id)
            if job:
                self._jobs[session_id] = job.model_copy(
                    update={**changes, "updated_at": utcnow()}
                )

    async def complete(self, session_id: str) -> None:
        await self._update(
            session_id,
            status=JobStatus.DONE,
            locked_until=None,
            last_error=None,
        )

    async def retry(self, session_id: str, next_run_at: datetime, error: str) -> None:
        await self._update(
            session_id,
            status=JobStatus.QUEUED,
            next_run_at=next_run_at,
            locked_until=None,
            last_error=error,
        )

    async def dead_letter(self, session_id: str, error: str) -> None:
        await self._update(
            session_id,
            status=JobStatus.DEAD,
            locked_until=None,
            last_error=error,
        )

    async def requeue(self, session_id: str) -> bool:
        async with self._lock:
            job = self._jobs.get(session_id)
            if job is None or job.status != JobStatus.DEAD:
                return False
            now = utcnow()
            self._jobs[session_id] = job.model_copy(update={
                "status": JobStatus.QUEUED,
                "attempts": 0,
                "next_run_at": now,
                "updated_at": now,
            })
            return True

    async def get(self, session_id: str) -> Optional[ReconciliationJob]:
        async with self._lock:
            job = self._jobs.get(session_id)
            return job.model_copy() if job else None

    async def list_dead(self, limit: int = 100) -> List[ReconciliationJob]:
        async with self._lock:
            dead = [j.model_copy() for j in self._jobs.values() if j.status == JobStatus.DEAD]
            return dead[:limit]

    async def stats(self) -> Dict[str, int]:
        async with self._lock:
            counts = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                counts[job.status.value] += 1
            return counts


# =============================================================================
# POSTGRES IMPLEMENTATION
# =============================================================================

class PostgresJobQueue(IJobQueue):
    """reconciliation_jobs table; claims use FOR UPDATE SKIP LOCKED"""

    def __init__(self, database: Database):
        self._db = database

    async def enqueue(self, job: ReconciliationJob) -> bool:
        inserted = await self._db.fetch_val(
            """
            INSERT INTO reconciliation_jobs
            (session_id, payment_intent_id, event_id, status, attempts, next_run_at)
            VALUES ($1, $2, $3, 'queued', 0, $4)
            ON CONFLICT (session_id) DO UPDATE
            SET payment_intent_id = EXCLUDED.payment_intent_id,
                event_id = EXCLUDED.event_id,
                status = 'queued',
                attempts = 0,
                next_run_at = EXCLUDED.next_run_at,
                locked_until = NULL,
                last_error = NULL,
                updated_at = NOW()
            WHERE reconciliation_jobs.status = 'dead'
            RETURNING session_id
            """,
            job.session_id,
            job.payment_intent_id,
            job.event_id,
            job.next_run_at,
        )
        return inserted is not None

    async def claim_due(self, limit: int, lease_seconds: float) -> List[ReconciliationJob]:
        rows = await self._db.fetch_all(
            """
            UPDATE reconciliation_jobs AS j
            SET status = 'running',
                attempts = j.attempts + 1,
                locked_until = NOW() + make_interval(secs => $2),
                updated_at = NOW()
            WHERE j.session_id IN (
                SELECT session_id FROM reconciliation_jobs
                WHERE (status = 'queued' AND next_run_at <= NOW())
                   OR (status = 'running' AND locked_until < NOW())
                ORDER BY next_run_at
                FOR UPDATE SKIP LOCKED
                LIMIT $1
            )
            RETURNING j.*
            """,
            limit,
            float(lease_seconds),
        )
        return [ReconciliationJob(**dict(row)) for row in rows]

    async def complete(self, session_id: str) -> None:
        await self._db.execute(
            """
            UPDATE reconciliation_jobs
            SET status = 'done', locked_until = NULL, last_error = NULL, updated_at = NOW()
            WHERE session_id = $1
            """,
            session_id
        )

    async def retry(self, session_id: str, next_run_at: datetime, error: str) -> None:
        await self._db.execute(
            """
            UPDATE reconciliation_jobs
            SET status = 'queued', next_run_at = $2, locked_until = NULL,
                last_error = $3, updated_at = NOW()
            WHERE session_id = $1
            """,
            session_id,
            next_run_at,
            error
        )

    async def dead_letter(self, session_id: str, error: str) -> None:
        await self._db.execute(
            """
            UPDATE reconciliation_jobs
            SET status = 'dead', locked_until = NULL, last_error = $2, updated_at = NOW()
            WHERE session_id = $1
            """,
            session_id,
            error
        )

    async def requeue(self, session_id: str) -> bool:
        result = await self._db.execute(
            """
            UPDATE reconciliation_jobs
            SET status = 'queued', attempts = 0, next_run_at = NOW(), updated_at = NOW()
            WHERE session_id = $1 AND status = 'dead'
            """,
            session_id
        )
        return result == "UPDATE 1"

    async def get(self, session_id: str) -> Optional[ReconciliationJob]:
        row = await self._db.fetch_one(
            "SELECT * FROM reconciliation_jobs WHERE session_id = $1",
            session_id
        )
        return ReconciliationJob(**dict(row)) if row else None

    async def list_dead(self, limit: int = 100) -> List[ReconciliationJob]:
        rows = await self._db.fetch_all(
            """
            SELECT * FROM reconciliation_jobs
            WHERE status = 'dead'
            ORDER BY updated_at DESC
            LIMIT $1
            """,
            limit
        )
        return [ReconciliationJob(**dict(row)) for row in rows]

    async def stats(self) -> Dict[str, int]:
        rows = await self._db.fetch_all(
            "SELECT status, COUNT(*) AS count FROM reconciliation_jobs GROUP BY status"
        )
        counts = {status.value: 0 for status in JobStatus}
        counts.update({row["status"]: row["count"] for row in rows})
        return counts
