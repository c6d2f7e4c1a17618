"""Pending sheet instrument snapshot rebuilds."""

from sqlalchemy import Column, Integer, String, DateTime, Index, UniqueConstraint

from database import Base


class SheetInstrumentSnapshotQueueEntry(Base):
    """One pending rebuild per (account, sheet); claimed_at/claimed_by null means unclaimed."""

    __tablename__ = "sheet_instrument_snapshot_queue"
    __table_args__ = (
        UniqueConstraint("account_id", "sheet_id", name="uq_sheet_instrument_snapshot_queue_key"),
        Index("ix_sheet_instrument_snapshot_queue_enqueued", "enqueued_at", "id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False)
    sheet_id = Column(Integer, nullable=False)
    enqueued_at = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String(100), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    claimed_by = Column(String(100), nullable=True)
