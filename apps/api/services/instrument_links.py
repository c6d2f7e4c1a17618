"""Authoritative reads of instrument-to-datasheet links."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.instrument import Instrument, InstrumentDatasheetLink
from models.instrument_loop import InstrumentLoop, InstrumentLoopMember
from models.sheet import Sheet


@dataclass(frozen=True)
class InstrumentLink:
    instrument_id: int
    instrument_tag: str
    instrument_tag_norm: Optional[str] = None
    instrument_type: Optional[str] = None
    link_role: Optional[str] = None
    loop_tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instrumentId": self.instrument_id,
            "instrumentTag": self.instrument_tag,
            "instrumentTagNorm": self.instrument_tag_norm,
            "instrumentType": self.instrument_type,
            "linkRole": self.link_role,
            "loopTags": list(self.loop_tags),
        }


def normalize_tag(tag: str) -> str:
    """Uppercase, trim and collapse internal whitespace/underscores to a single dash."""
    return re.sub(r"[\s_]+", "-", (tag or "").strip()).upper()


async def sheet_belongs_to_account(db: AsyncSession, sheet_id: int, account_id: int) -> bool:
    result = await db.execute(select(Sheet.id).where(Sheet.id == sheet_id, Sheet.account_id == account_id))
    return result.scalar_one_or_none() is not None


async def _loop_tags_for_instruments(
    db: AsyncSession,
    account_id: int,
    instrument_ids: Iterable[int],
) -> Dict[int, List[str]]:
    ids = sorted(set(instrument_ids))
    tags_by_instrument: Dict[int, List[str]] = defaultdict(list)
    if not ids:
        return tags_by_instrument
    result = await db.execute(
        select(InstrumentLoopMember.instrument_id, InstrumentLoop.loop_tag)
        .select_from(InstrumentLoopMember)
        .join(InstrumentLoop, InstrumentLoop.id == InstrumentLoopMember.loop_id)
        .where(
            InstrumentLoopMember.account_id == account_id,
            InstrumentLoop.account_id == account_id,
            InstrumentLoopMember.instrument_id.in_(ids),
        )
        .order_by(InstrumentLoopMember.instrument_id, InstrumentLoop.loop_tag)
    )
    for instrument_id, loop_tag in result.all():
        tags_by_instrument[instrument_id].append(loop_tag)
    return tags_by_instrument


async def list_linked_to_sheet(db: AsyncSession, account_id: int, sheet_id: int) -> List[InstrumentLink]:
    """Instruments linked to a sheet, ordered by normalized tag then instrument id."""
    result = await db.execute(
        select(
            Instrument.id,
            Instrument.instrument_tag,
            Instrument.instrument_tag_norm,
            Instrument.instrument_type,
            InstrumentDatasheetLink.link_role,
        )
        .select_from(InstrumentDatasheetLink)
        .join(
            Instrument,
            (Instrument.id == InstrumentDatasheetLink.instrument_id)
            & (Instrument.account_id == InstrumentDatasheetLink.account_id),
        )
        .join(
            Sheet,
            (Sheet.id == InstrumentDatasheetLink.sheet_id) & (Sheet.account_id == InstrumentDatasheetLink.account_id),
        )
        .where(
            InstrumentDatasheetLink.account_id == account_id,
            InstrumentDatasheetLink.sheet_id == sheet_id,
        )
        .order_by(Instrument.instrument_tag_norm, Instrument.id, InstrumentDatasheetLink.id)
    )
    rows = result.all()
    loop_tags = await _loop_tags_for_instruments(db, account_id, (row[0] for row in rows))
    return [
        InstrumentLink(
            instrument_id=instrument_id,
            instrument_tag=instrument_tag,
            instrument_tag_norm=instrument_tag_norm,
            instrument_type=instrument_type,
            link_role=link_role,
            loop_tags=list(loop_tags.get(instrument_id, [])),
        )
        for instrument_id, instrument_tag, instrument_tag_norm, instrument_type, link_role in rows
    ]


async def list_sheet_ids_linked_to_instrument(db: AsyncSession, account_id: int, instrument_id: int) -> List[int]:
    result = await db.execute(
        select(InstrumentDatasheetLink.sheet_id)
        .where(
            InstrumentDatasheetLink.account_id == account_id,
            InstrumentDatasheetLink.instrument_id == instrument_id,
        )
        .distinct()
        .order_by(InstrumentDatasheetLink.sheet_id)
    )
    return [int(sheet_id) for sheet_id in result.scalars().all()]
