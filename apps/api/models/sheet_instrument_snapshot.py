"""Sheet instrument snapshot cache model."""

from sqlalchemy import Column, Integer, String, DateTime, Text

from database import Base


class SheetInstrumentSnapshot(Base):
    """Materialized instrument-link payload per (account, sheet)."""

    __tablename__ = "sheet_instrument_snapshots"

    account_id = Column(Integer, primary_key=True, autoincrement=False)
    sheet_id = Column(Integer, primary_key=True, autoincrement=False)
    payload_json = Column(Text, nullable=True)
    built_at = Column(DateTime(timezone=True), nullable=True)
    build_ms = Column(Integer, nullable=True)
    instrument_count = Column(Integer, nullable=False, default=0)
    build_version = Column(Integer, nullable=False, default=1)
    last_error = Column(String(500), nullable=True)
    last_error_at = Column(DateTime(timezone=True), nullable=True)
