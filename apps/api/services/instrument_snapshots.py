"""Build, serialize and validate sheet instrument snapshot payloads."""

from __future__ import annotations

import json
import math
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from database import async_session_maker
from services.instrument_links import InstrumentLink, list_linked_to_sheet
from services.snapshot_store import SHEET_INSTRUMENT_SNAPSHOT_VERSION

LinkSource = Callable[[int, int], Awaitable[Sequence[InstrumentLink]]]


class SnapshotBuilder:
    """Reads linked instruments for a sheet from the authoritative source.

    The source is injectable so the worker can be exercised without a database.
    """

    def __init__(
        self,
        source: Optional[LinkSource] = None,
        session_maker: Optional[async_sessionmaker] = None,
    ):
        self._session_maker = session_maker or async_session_maker
        self._source = source or self._read_linked_instruments

    async def _read_linked_instruments(self, account_id: int, sheet_id: int) -> List[InstrumentLink]:
        async with self._session_maker() as db:
            return await list_linked_to_sheet(db, account_id, sheet_id)

    async def build(self, account_id: int, sheet_id: int) -> List[InstrumentLink]:
        return list(await self._source(account_id, sheet_id))


def serialize_snapshot_payload(links: Sequence[InstrumentLink]) -> str:
    return json.dumps([link.to_dict() for link in links], separators=(",", ":"), ensure_ascii=False)


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def parse_and_validate_snapshot(payload_json: Any, build_version: Any) -> Optional[List[InstrumentLink]]:
    """Typed links from a stored payload, or None when the payload cannot be trusted.

    None means cache miss: wrong build version, unparseable JSON, a non-list
    payload, or any element without a numeric ``instrumentId`` and string
    ``instrumentTag``. Wrong-typed optional fields are coerced instead.
    """
    if build_version != SHEET_INSTRUMENT_SNAPSHOT_VERSION:
        return None
    if not isinstance(payload_json, str):
        return None
    try:
        parsed = json.loads(payload_json)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None

    links: List[InstrumentLink] = []
    for item in parsed:
        if not isinstance(item, dict):
            return None
        instrument_id = _finite_number(item.get("instrumentId"))
        instrument_tag = _optional_str(item.get("instrumentTag"))
        if instrument_id is None or instrument_tag is None:
            return None
        raw_loop_tags = item.get("loopTags")
        loop_tags = [tag for tag in raw_loop_tags if isinstance(tag, str)] if isinstance(raw_loop_tags, list) else []
        links.append(
            InstrumentLink(
                instrument_id=instrument_id,
                instrument_tag=instrument_tag,
                instrument_tag_norm=_optional_str(item.get("instrumentTagNorm")),
                instrument_type=_optional_str(item.get("instrumentType")),
                link_role=_optional_str(item.get("linkRole")),
                loop_tags=loop_tags,
            )
        )
    return links
