"""Sheet instrument snapshot rebuild worker.

Claims pending rebuilds, builds each snapshot, and either persists it or
records the failure. A failed row is released for another attempt until it
has been claimed ``MAX_ATTEMPTS`` times, then dropped from the queue; the
failure stays visible on the snapshot's ``last_error``.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Optional

from config import resolve_snapshot_worker_id, settings
from services.instrument_snapshots import SnapshotBuilder, serialize_snapshot_payload
from services.snapshot_queue import ClaimedQueueRow, RebuildQueue
from services.snapshot_store import SnapshotMeta, SnapshotStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
MAX_SNAPSHOT_BYTES = 1_500_000
MAX_ERROR_MESSAGE_CHARS = 500

_WHITESPACE_RE = re.compile(r"\s+")


class SnapshotPayloadTooLargeError(RuntimeError):
    """Raised when a serialized snapshot exceeds ``MAX_SNAPSHOT_BYTES``."""

    def __init__(self, payload_bytes: int):
        self.payload_bytes = payload_bytes
        super().__init__(f"Snapshot payload too large: {payload_bytes} bytes")


def normalize_error_for_log(err: object) -> str:
    """Single-line error text for last_error: whitespace collapsed, at most 500 chars."""
    raw = str(err)
    if not raw and isinstance(err, BaseException):
        raw = type(err).__name__
    collapsed = _WHITESPACE_RE.sub(" ", raw).strip()
    if len(collapsed) <= MAX_ERROR_MESSAGE_CHARS:
        return collapsed
    return collapsed[: MAX_ERROR_MESSAGE_CHARS - 3] + "..."


class SnapshotWorker:
    """Drains the rebuild queue for one process.

    Construct once per process; ``kick`` coalesces bursts of enqueues into a
    single pending drain owned by this instance.
    """

    def __init__(
        self,
        queue: Optional[RebuildQueue] = None,
        store: Optional[SnapshotStore] = None,
        builder: Optional[SnapshotBuilder] = None,
        worker_id: Optional[str] = None,
        debug: Optional[bool] = None,
        batch_size: Optional[int] = None,
    ):
        self.queue = queue or RebuildQueue()
        self.store = store or SnapshotStore()
        self.builder = builder or SnapshotBuilder()
        self.worker_id = worker_id or resolve_snapshot_worker_id()
        self.debug = settings.SNAPSHOT_DEBUG if debug is None else debug
        self.batch_size = max(int(batch_size or settings.SNAPSHOT_DRAIN_BATCH_SIZE), 1)
        self._is_scheduled = False
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def is_scheduled(self) -> bool:
        return self._is_scheduled

    async def _record_failure(self, row: ClaimedQueueRow, message: str) -> None:
        await self.store.upsert_error(row.account_id, row.sheet_id, message)
        if row.attempts >= MAX_ATTEMPTS:
            await self.queue.delete(row.account_id, row.sheet_id)
            logger.warning(
                "Giving up on snapshot rebuild account=%s sheet=%s after %s attempts: %s",
                row.account_id,
                row.sheet_id,
                row.attempts,
                message,
            )
        else:
            await self.queue.release(row.account_id, row.sheet_id, self.worker_id)

    async def process_claimed_row(self, row: ClaimedQueueRow) -> bool:
        """Build and persist one claimed row. Never raises; returns True on success."""
        started = time.monotonic()
        instrument_count = 0
        success = False
        if self.debug:
            logger.info(
                "[snapshot-worker] row claimed account_id=%s sheet_id=%s attempts=%s",
                row.account_id,
                row.sheet_id,
                row.attempts,
            )
        try:
            links = await self.builder.build(row.account_id, row.sheet_id)
            build_ms = int((time.monotonic() - started) * 1000)
            instrument_count = len(links)
            payload_json = serialize_snapshot_payload(links)
            payload_bytes = len(payload_json.encode("utf-8"))
            if payload_bytes > MAX_SNAPSHOT_BYTES:
                raise SnapshotPayloadTooLargeError(payload_bytes)
            await self.store.upsert_snapshot(
                row.account_id,
                row.sheet_id,
                payload_json,
                SnapshotMeta(build_ms=build_ms, instrument_count=instrument_count),
            )
            await self.queue.delete(row.account_id, row.sheet_id)
            success = True
        except Exception as exc:
            message = normalize_error_for_log(exc)
            logger.warning(
                "Snapshot rebuild failed account=%s sheet=%s attempt=%s: %s",
                row.account_id,
                row.sheet_id,
                row.attempts,
                message,
            )
            try:
                await self._record_failure(row, message)
            except Exception:
                # The claim expires after the TTL and the row is retried then.
                logger.exception(
                    "Could not record snapshot failure for account=%s sheet=%s",
                    row.account_id,
                    row.sheet_id,
                )

        if self.debug:
            logger.info(
                "[snapshot-worker] row done account_id=%s sheet_id=%s attempts=%s success=%s build_ms=%s instrument_count=%s",
                row.account_id,
                row.sheet_id,
                row.attempts,
                success,
                int((time.monotonic() - started) * 1000),
                instrument_count,
            )
        return success

    async def process_queue_once(self) -> bool:
        """Claim and process a single row; False when nothing was claimable."""
        claimed = await self.queue.claim_one(self.worker_id)
        if claimed is None:
            return False
        await self.process_claimed_row(claimed)
        return True

    async def drain_queue(self, max_items: Optional[int] = None) -> int:
        """Claim one batch and process it sequentially. Returns rows processed."""
        limit = self.batch_size if max_items is None else int(max_items)
        if self.debug:
            logger.info("[snapshot-worker] drain_queue start max_items=%s", limit)
        rows = await self.queue.claim_many(self.worker_id, limit)
        for row in rows:
            await self.process_claimed_row(row)
        if self.debug:
            logger.info("[snapshot-worker] drain_queue end processed=%s", len(rows))
        return len(rows)

    async def _run_scheduled_drain(self) -> None:
        try:
            await self.drain_queue()
        except Exception:
            logger.exception("Sheet instrument snapshot drain failed")
        finally:
            self._is_scheduled = False
            self._drain_task = None

    def kick(self) -> bool:
        """Schedule one drain on the next loop turn unless one is already pending."""
        if self._is_scheduled:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Snapshot worker kick ignored: no running event loop")
            return False
        self._is_scheduled = True
        self._drain_task = loop.create_task(self._run_scheduled_drain())
        return True

    async def wait_idle(self) -> None:
        """Wait for the pending drain, if any, to finish."""
        task = self._drain_task
        if task is not None:
            await asyncio.shield(task)
