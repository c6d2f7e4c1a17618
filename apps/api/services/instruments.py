"""Instrument link services: mutations that invalidate snapshots and the cached read path."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.instrument import Instrument, InstrumentDatasheetLink
from services.instrument_links import (
    InstrumentLink,
    list_linked_to_sheet,
    list_sheet_ids_linked_to_instrument,
    normalize_tag,
    sheet_belongs_to_account,
)
from services.instrument_snapshots import parse_and_validate_snapshot
from services.snapshot_queue import RebuildQueue
from services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

UPDATABLE_INSTRUMENT_FIELDS = ("instrument_type", "service", "status", "notes")


class SnapshotKicker(Protocol):
    def kick(self) -> bool: ...


async def request_snapshot_rebuild(
    queue: RebuildQueue,
    account_id: int,
    sheet_id: int,
    reason: str,
) -> bool:
    """Enqueue a rebuild; failures are logged so the triggering mutation still succeeds."""
    try:
        await queue.enqueue(account_id, sheet_id, reason)
        return True
    except Exception as exc:
        logger.warning(
            "Could not enqueue snapshot rebuild account=%s sheet=%s reason=%s: %s",
            account_id,
            sheet_id,
            reason,
            exc,
        )
        return False


def _kick(worker: Optional[SnapshotKicker]) -> None:
    if worker is not None:
        worker.kick()


async def _get_instrument(db: AsyncSession, account_id: int, instrument_id: int) -> Optional[Instrument]:
    result = await db.execute(
        select(Instrument).where(Instrument.id == instrument_id, Instrument.account_id == account_id)
    )
    return result.scalar_one_or_none()


async def _require_sheet(db: AsyncSession, account_id: int, sheet_id: int) -> None:
    if not await sheet_belongs_to_account(db, sheet_id, account_id):
        raise HTTPException(status_code=404, detail="Sheet not found or does not belong to account")


async def _require_instrument(db: AsyncSession, account_id: int, instrument_id: int) -> Instrument:
    instrument = await _get_instrument(db, account_id, instrument_id)
    if instrument is None:
        raise HTTPException(status_code=404, detail="Instrument not found")
    return instrument


async def link_instrument_to_sheet_service(
    *,
    account_id: int,
    sheet_id: int,
    instrument_id: int,
    link_role: Optional[str],
    created_by: Optional[int],
    db: AsyncSession,
    queue: RebuildQueue,
    worker: Optional[SnapshotKicker] = None,
) -> Dict[str, Any]:
    await _require_sheet(db, account_id, sheet_id)
    await _require_instrument(db, account_id, instrument_id)

    existing = await db.execute(
        select(InstrumentDatasheetLink.id).where(
            InstrumentDatasheetLink.account_id == account_id,
            InstrumentDatasheetLink.instrument_id == instrument_id,
            InstrumentDatasheetLink.sheet_id == sheet_id,
        )
    )
    if existing.first() is not None:
        raise HTTPException(status_code=409, detail="Instrument is already linked to this datasheet")

    db.add(
        InstrumentDatasheetLink(
            account_id=account_id,
            instrument_id=instrument_id,
            sheet_id=sheet_id,
            link_role=link_role,
            created_by=created_by,
        )
    )
    await db.commit()

    await request_snapshot_rebuild(queue, account_id, sheet_id, "link")
    _kick(worker)
    return {"sheet_id": sheet_id, "instrument_id": instrument_id, "link_role": link_role, "linked": True}


async def unlink_instrument_from_sheet_service(
    *,
    account_id: int,
    sheet_id: int,
    instrument_id: int,
    link_role: Optional[str] = None,
    db: AsyncSession,
    queue: RebuildQueue,
    worker: Optional[SnapshotKicker] = None,
) -> Dict[str, Any]:
    await _require_sheet(db, account_id, sheet_id)
    await _require_instrument(db, account_id, instrument_id)

    query = select(InstrumentDatasheetLink).where(
        InstrumentDatasheetLink.account_id == account_id,
        InstrumentDatasheetLink.instrument_id == instrument_id,
        InstrumentDatasheetLink.sheet_id == sheet_id,
    )
    if link_role is not None:
        query = query.where(InstrumentDatasheetLink.link_role == link_role)
    result = await db.execute(query)
    links = result.scalars().all()
    if not links:
        raise HTTPException(status_code=404, detail="Link not found or already removed")
    for link in links:
        await db.delete(link)
    await db.commit()

    await request_snapshot_rebuild(queue, account_id, sheet_id, "unlink")
    _kick(worker)
    return {"sheet_id": sheet_id, "instrument_id": instrument_id, "removed": len(links)}


async def update_instrument_service(
    *,
    account_id: int,
    instrument_id: int,
    changes: Dict[str, Any],
    db: AsyncSession,
    queue: RebuildQueue,
    worker: Optional[SnapshotKicker] = None,
) -> Dict[str, Any]:
    """Apply instrument edits and enqueue a rebuild for every sheet it is linked to."""
    instrument = await _require_instrument(db, account_id, instrument_id)

    if changes.get("instrument_tag") is not None:
        instrument_tag = str(changes["instrument_tag"]).strip()
        if not instrument_tag:
            raise HTTPException(status_code=422, detail="instrument_tag cannot be empty")
        instrument_tag_norm = normalize_tag(instrument_tag)
        clash = await db.execute(
            select(Instrument.id).where(
                Instrument.account_id == account_id,
                Instrument.instrument_tag_norm == instrument_tag_norm,
                Instrument.id != instrument_id,
            )
        )
        if clash.first() is not None:
            raise HTTPException(status_code=409, detail="Instrument tag already exists in this account")
        instrument.instrument_tag = instrument_tag
        instrument.instrument_tag_norm = instrument_tag_norm
    for field_name in UPDATABLE_INSTRUMENT_FIELDS:
        if field_name in changes:
            setattr(instrument, field_name, changes[field_name])
    await db.commit()

    sheet_ids = await list_sheet_ids_linked_to_instrument(db, account_id, instrument_id)
    for sheet_id in sheet_ids:
        await request_snapshot_rebuild(queue, account_id, sheet_id, "instrument_update")
    if sheet_ids:
        _kick(worker)

    return {
        "instrument_id": instrument.id,
        "instrument_tag": instrument.instrument_tag,
        "instrument_tag_norm": instrument.instrument_tag_norm,
        "instrument_type": instrument.instrument_type,
        "linked_sheet_ids": sheet_ids,
    }


async def list_instruments_linked_to_sheet_service(
    *,
    account_id: int,
    sheet_id: int,
    db: AsyncSession,
    store: SnapshotStore,
    queue: RebuildQueue,
    worker: Optional[SnapshotKicker] = None,
) -> List[InstrumentLink]:
    """Serve from the snapshot when valid, otherwise read live and request a rebuild."""
    snapshot = None
    try:
        snapshot = await store.get(account_id, sheet_id)
    except Exception as exc:
        logger.warning("Snapshot read failed for account=%s sheet=%s, using live query: %s", account_id, sheet_id, exc)

    # Error-only rows (never built) carry a placeholder payload and no build_ms.
    if snapshot is not None and snapshot.build_ms is not None:
        cached = parse_and_validate_snapshot(snapshot.payload_json, snapshot.build_version)
        if cached is not None:
            return cached

    links = await list_linked_to_sheet(db, account_id, sheet_id)
    if links:
        reason = "stale" if snapshot is not None else "miss"
        await request_snapshot_rebuild(queue, account_id, sheet_id, reason)
        _kick(worker)
        return links

    await _require_sheet(db, account_id, sheet_id)
    return []
