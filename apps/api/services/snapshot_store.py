"""Persistence for built sheet instrument snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database import async_session_maker, utc_now
from models.sheet_instrument_snapshot import SheetInstrumentSnapshot

SHEET_INSTRUMENT_SNAPSHOT_VERSION = 1
MAX_LAST_ERROR_CHARS = 500
EMPTY_PAYLOAD_JSON = "[]"


@dataclass(frozen=True)
class SnapshotMeta:
    build_ms: int
    instrument_count: int


def _truncate_error(message: str) -> str:
    if len(message) > MAX_LAST_ERROR_CHARS:
        return message[: MAX_LAST_ERROR_CHARS - 3] + "..."
    return message


class SnapshotStore:
    """At most one snapshot row per (account_id, sheet_id)."""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self._session_maker = session_maker or async_session_maker

    async def get(self, account_id: int, sheet_id: int) -> Optional[SheetInstrumentSnapshot]:
        async with self._session_maker() as db:
            return await db.get(SheetInstrumentSnapshot, (account_id, sheet_id))

    async def _update_or_insert(
        self,
        db: AsyncSession,
        account_id: int,
        sheet_id: int,
        changes: Dict[str, Any],
        defaults: Dict[str, Any],
    ) -> None:
        stmt = (
            update(SheetInstrumentSnapshot)
            .where(
                SheetInstrumentSnapshot.account_id == account_id,
                SheetInstrumentSnapshot.sheet_id == sheet_id,
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount:
            await db.commit()
            return

        db.add(SheetInstrumentSnapshot(account_id=account_id, sheet_id=sheet_id, **{**defaults, **changes}))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            await db.execute(stmt)
            await db.commit()

    async def upsert_snapshot(
        self,
        account_id: int,
        sheet_id: int,
        payload_json: str,
        meta: SnapshotMeta,
    ) -> None:
        """Replace payload and metadata; a successful build always clears the last error."""
        changes = {
            "payload_json": payload_json,
            "built_at": utc_now(),
            "build_ms": int(meta.build_ms),
            "instrument_count": int(meta.instrument_count),
            "build_version": SHEET_INSTRUMENT_SNAPSHOT_VERSION,
            "last_error": None,
            "last_error_at": None,
        }
        async with self._session_maker() as db:
            await self._update_or_insert(db, account_id, sheet_id, changes, defaults={})

    async def upsert_error(self, account_id: int, sheet_id: int, message: str) -> None:
        """Record a failure without touching any existing payload."""
        changes = {
            "last_error": _truncate_error(message),
            "last_error_at": utc_now(),
        }
        defaults = {
            "payload_json": EMPTY_PAYLOAD_JSON,
            "built_at": utc_now(),
            "build_ms": None,
            "instrument_count": 0,
            "build_version": 1,
        }
        async with self._session_maker() as db:
            await self._update_or_insert(db, account_id, sheet_id, changes, defaults)
