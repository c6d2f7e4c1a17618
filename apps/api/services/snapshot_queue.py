"""Durable rebuild queue for sheet instrument snapshots.

The queue is a set of pending (account_id, sheet_id) keys. Workers claim rows
atomically; a claim older than ``CLAIM_TTL_MINUTES`` is stale and may be
claimed again by any worker. Rows leave the queue on success or give-up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from database import async_session_maker, utc_minutes_ago, utc_now
from models.sheet_instrument_snapshot_queue import SheetInstrumentSnapshotQueueEntry

logger = logging.getLogger(__name__)

CLAIM_TTL_MINUTES = 5
MAX_REASON_CHARS = 100

QueueEntry = SheetInstrumentSnapshotQueueEntry


@dataclass(frozen=True)
class ClaimedQueueRow:
    account_id: int
    sheet_id: int
    attempts: int
    enqueued_at: Optional[datetime] = None
    reason: Optional[str] = None


def _truncate_reason(reason: Optional[str]) -> Optional[str]:
    if reason is not None and len(reason) > MAX_REASON_CHARS:
        return reason[: MAX_REASON_CHARS - 3] + "..."
    return reason


def claimable_condition():
    """Rows that are unclaimed, or whose claim is older than the TTL."""
    return or_(
        QueueEntry.claimed_at.is_(None),
        QueueEntry.claimed_at < utc_minutes_ago(CLAIM_TTL_MINUTES),
    )


class RebuildQueue:
    """Pending snapshot rebuilds with claim/attempt bookkeeping."""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self._session_maker = session_maker or async_session_maker

    async def _refresh(self, db: AsyncSession, account_id: int, sheet_id: int, reason: Optional[str]) -> int:
        result = await db.execute(
            update(QueueEntry)
            .where(QueueEntry.account_id == account_id, QueueEntry.sheet_id == sheet_id)
            .values(enqueued_at=utc_now(), reason=reason, claimed_at=None, claimed_by=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def enqueue(self, account_id: int, sheet_id: int, reason: Optional[str] = None) -> None:
        """Add the key, or refresh it and drop any in-flight claim if already pending."""
        reason = _truncate_reason(reason)
        async with self._session_maker() as db:
            if await self._refresh(db, account_id, sheet_id, reason):
                await db.commit()
                return
            db.add(
                QueueEntry(
                    account_id=account_id,
                    sheet_id=sheet_id,
                    enqueued_at=utc_now(),
                    reason=reason,
                    attempts=0,
                    last_attempt_at=None,
                    claimed_at=None,
                    claimed_by=None,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                # Lost a concurrent first insert for the same key.
                await db.rollback()
                await self._refresh(db, account_id, sheet_id, reason)
                await db.commit()

    async def claim_many(self, worker_id: str, max_items: int) -> List[ClaimedQueueRow]:
        """Atomically claim up to ``max_items`` claimable rows, oldest first."""
        if max_items <= 0:
            return []
        claimable_ids = (
            select(QueueEntry.id)
            .where(claimable_condition())
            .order_by(QueueEntry.enqueued_at.asc(), QueueEntry.id.asc())
            .limit(max_items)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(QueueEntry)
            .where(QueueEntry.id.in_(claimable_ids.scalar_subquery()))
            .values(
                claimed_at=utc_now(),
                claimed_by=worker_id,
                last_attempt_at=utc_now(),
                attempts=QueueEntry.attempts + 1,
            )
            .returning(
                QueueEntry.id,
                QueueEntry.account_id,
                QueueEntry.sheet_id,
                QueueEntry.attempts,
                QueueEntry.enqueued_at,
                QueueEntry.reason,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_maker() as db:
            result = await db.execute(stmt)
            rows = result.all()
            await db.commit()

        # RETURNING order is not guaranteed; restore FIFO order.
        rows = sorted(rows, key=lambda row: (row.enqueued_at, row.id))
        claimed = [
            ClaimedQueueRow(
                account_id=row.account_id,
                sheet_id=row.sheet_id,
                attempts=int(row.attempts),
                enqueued_at=row.enqueued_at,
                reason=row.reason,
            )
            for row in rows
        ]
        if claimed:
            logger.debug("Worker %s claimed %d snapshot rebuilds", worker_id, len(claimed))
        return claimed

    async def claim_one(self, worker_id: str) -> Optional[ClaimedQueueRow]:
        claimed = await self.claim_many(worker_id, 1)
        return claimed[0] if claimed else None

    async def release(self, account_id: int, sheet_id: int, worker_id: str) -> bool:
        """Clear the claim only while ``worker_id`` still holds it."""
        async with self._session_maker() as db:
            result = await db.execute(
                update(QueueEntry)
                .where(
                    QueueEntry.account_id == account_id,
                    QueueEntry.sheet_id == sheet_id,
                    QueueEntry.claimed_by == worker_id,
                )
                .values(claimed_at=None, claimed_by=None)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        released = bool(result.rowcount)
        if not released:
            logger.debug(
                "Release skipped for account=%s sheet=%s: claim no longer held by %s",
                account_id,
                sheet_id,
                worker_id,
            )
        return released

    async def delete(self, account_id: int, sheet_id: int) -> None:
        async with self._session_maker() as db:
            await db.execute(
                delete(QueueEntry)
                .where(QueueEntry.account_id == account_id, QueueEntry.sheet_id == sheet_id)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def get(self, account_id: int, sheet_id: int) -> Optional[SheetInstrumentSnapshotQueueEntry]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(QueueEntry).where(QueueEntry.account_id == account_id, QueueEntry.sheet_id == sheet_id)
            )
            return result.scalar_one_or_none()

    async def count_pending(self) -> int:
        async with self._session_maker() as db:
            result = await db.execute(select(func.count()).select_from(QueueEntry))
            return int(result.scalar_one() or 0)
