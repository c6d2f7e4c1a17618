"""Instrument and instrument-to-datasheet link models."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Instrument(Base):
    """Tagged field instrument registered in an account."""

    __tablename__ = "instruments"
    __table_args__ = (
        UniqueConstraint("account_id", "instrument_tag_norm", name="uq_instruments_account_tag_norm"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False, index=True)
    instrument_tag = Column(String, nullable=False)
    instrument_tag_norm = Column(String, nullable=True, index=True)
    instrument_type = Column(String, nullable=True)
    service = Column(String, nullable=True)
    status = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    sheet_links = relationship("InstrumentDatasheetLink", back_populates="instrument")
    loop_memberships = relationship("InstrumentLoopMember", back_populates="instrument")


class InstrumentDatasheetLink(Base):
    """Link between an instrument and a datasheet, optionally with a role."""

    __tablename__ = "instrument_datasheet_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False, index=True)
    instrument_id = Column(Integer, ForeignKey("instruments.id"), nullable=False, index=True)
    sheet_id = Column(Integer, ForeignKey("sheets.id"), nullable=False, index=True)
    link_role = Column(String, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    instrument = relationship("Instrument", back_populates="sheet_links")
    sheet = relationship("Sheet", back_populates="instrument_links")
