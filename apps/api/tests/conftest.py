import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
import models  # noqa: F401
from models.instrument import Instrument, InstrumentDatasheetLink
from models.instrument_loop import InstrumentLoop, InstrumentLoopMember
from models.sheet import Sheet
from services.snapshot_queue import RebuildQueue
from services.snapshot_store import SnapshotStore


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    db_path = tmp_path / "snapshots.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def snapshot_queue(session_maker):
    return RebuildQueue(session_maker)


@pytest_asyncio.fixture
async def snapshot_store(session_maker):
    return SnapshotStore(session_maker)


@pytest_asyncio.fixture
async def seeded_sheet(session_maker):
    """Account 1 / sheet 5 with two linked instruments (one in a loop) and an unlinked one."""
    async with session_maker() as db:
        sheet = Sheet(account_id=1, name="Pressure transmitters")
        other_sheet = Sheet(account_id=2, name="Other account sheet")
        pt = Instrument(account_id=1, instrument_tag="PT-101", instrument_tag_norm="PT-101", instrument_type="Pressure")
        ft = Instrument(account_id=1, instrument_tag="FT 100", instrument_tag_norm="FT-100", instrument_type="Flow")
        spare = Instrument(account_id=1, instrument_tag="TT-300", instrument_tag_norm="TT-300", instrument_type="Temperature")
        db.add_all([sheet, other_sheet, pt, ft, spare])
        await db.flush()

        loop = InstrumentLoop(account_id=1, loop_tag="LC-101")
        db.add(loop)
        await db.flush()
        db.add_all(
            [
                InstrumentLoopMember(account_id=1, loop_id=loop.id, instrument_id=pt.id),
                InstrumentDatasheetLink(account_id=1, instrument_id=pt.id, sheet_id=sheet.id, link_role=None),
                InstrumentDatasheetLink(account_id=1, instrument_id=ft.id, sheet_id=sheet.id, link_role="primary"),
            ]
        )
        await db.commit()
        return {
            "account_id": 1,
            "sheet_id": sheet.id,
            "other_sheet_id": other_sheet.id,
            "pt_id": pt.id,
            "ft_id": ft.id,
            "spare_id": spare.id,
        }
