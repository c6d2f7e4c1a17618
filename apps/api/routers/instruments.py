"""Instrument-to-datasheet links and sheet instrument snapshot status."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from services.instruments import (
    link_instrument_to_sheet_service,
    list_instruments_linked_to_sheet_service,
    unlink_instrument_from_sheet_service,
    update_instrument_service,
)
from services.snapshot_jobs import enqueue_snapshot_drain_job
from services.snapshot_worker import SnapshotWorker

router = APIRouter()
logger = logging.getLogger(__name__)


class LinkInstrumentRequest(BaseModel):
    account_id: int
    instrument_id: int
    link_role: Optional[str] = Field(default=None, max_length=50)
    created_by: Optional[int] = None


class UpdateInstrumentRequest(BaseModel):
    account_id: int
    instrument_tag: Optional[str] = Field(default=None, max_length=100)
    instrument_type: Optional[str] = None
    service: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


def get_snapshot_worker(request: Request) -> SnapshotWorker:
    worker = getattr(request.app.state, "snapshot_worker", None)
    if worker is None:
        raise HTTPException(status_code=503, detail="Snapshot worker is not running.")
    return worker


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


@router.get("/sheets/{sheet_id}/instruments")
async def list_sheet_instruments(
    sheet_id: int,
    account_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    worker: SnapshotWorker = Depends(get_snapshot_worker),
):
    links = await list_instruments_linked_to_sheet_service(
        account_id=account_id,
        sheet_id=sheet_id,
        db=db,
        store=worker.store,
        queue=worker.queue,
        worker=worker,
    )
    return {"sheet_id": sheet_id, "items": [link.to_dict() for link in links]}


@router.post("/sheets/{sheet_id}/instruments")
async def link_sheet_instrument(
    sheet_id: int,
    request: LinkInstrumentRequest,
    db: AsyncSession = Depends(get_db),
    worker: SnapshotWorker = Depends(get_snapshot_worker),
):
    return await link_instrument_to_sheet_service(
        account_id=request.account_id,
        sheet_id=sheet_id,
        instrument_id=request.instrument_id,
        link_role=request.link_role,
        created_by=request.created_by,
        db=db,
        queue=worker.queue,
        worker=worker,
    )


@router.delete("/sheets/{sheet_id}/instruments/{instrument_id}")
async def unlink_sheet_instrument(
    sheet_id: int,
    instrument_id: int,
    account_id: int = Query(...),
    link_role: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    worker: SnapshotWorker = Depends(get_snapshot_worker),
):
    return await unlink_instrument_from_sheet_service(
        account_id=account_id,
        sheet_id=sheet_id,
        instrument_id=instrument_id,
        link_role=link_role,
        db=db,
        queue=worker.queue,
        worker=worker,
    )


@router.patch("/instruments/{instrument_id}")
async def update_instrument(
    instrument_id: int,
    request: UpdateInstrumentRequest,
    db: AsyncSession = Depends(get_db),
    worker: SnapshotWorker = Depends(get_snapshot_worker),
):
    changes = request.model_dump(exclude_unset=True, exclude={"account_id"})
    return await update_instrument_service(
        account_id=request.account_id,
        instrument_id=instrument_id,
        changes=changes,
        db=db,
        queue=worker.queue,
        worker=worker,
    )


@router.get("/sheets/{sheet_id}/instrument-snapshot")
async def sheet_instrument_snapshot_status(
    sheet_id: int,
    account_id: int = Query(...),
    worker: SnapshotWorker = Depends(get_snapshot_worker),
) -> Dict[str, Any]:
    """Operator view of the cached snapshot and any pending rebuild."""
    snapshot = await worker.store.get(account_id, sheet_id)
    entry = await worker.queue.get(account_id, sheet_id)
    return {
        "account_id": account_id,
        "sheet_id": sheet_id,
        "snapshot": None
        if snapshot is None
        else {
            "built_at": _iso(snapshot.built_at),
            "build_ms": snapshot.build_ms,
            "instrument_count": snapshot.instrument_count,
            "build_version": snapshot.build_version,
            "last_error": snapshot.last_error,
            "last_error_at": _iso(snapshot.last_error_at),
        },
        "pending": None
        if entry is None
        else {
            "enqueued_at": _iso(entry.enqueued_at),
            "reason": entry.reason,
            "attempts": entry.attempts,
            "last_attempt_at": _iso(entry.last_attempt_at),
            "claimed_at": _iso(entry.claimed_at),
            "claimed_by": entry.claimed_by,
        },
    }


@router.post("/instrument-snapshots/drain")
async def drain_instrument_snapshots(
    max_items: Optional[int] = Query(default=None, ge=1, le=100),
    worker: SnapshotWorker = Depends(get_snapshot_worker),
):
    if settings.SNAPSHOT_RQ_ENABLED:
        try:
            job = enqueue_snapshot_drain_job(max_items)
        except Exception as exc:
            logger.warning("Snapshot drain job enqueue failed: %s", exc)
            raise HTTPException(status_code=503, detail="Snapshot drain queue unavailable.") from exc
        return {"mode": "queued", "job_id": job.id}
    processed = await worker.drain_queue(max_items)
    return {"mode": "inline", "processed": processed}
