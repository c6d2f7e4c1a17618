"""Control loop models grouping instruments."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class InstrumentLoop(Base):
    """Control loop identified by its loop tag."""

    __tablename__ = "instrument_loops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False, index=True)
    loop_tag = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    members = relationship("InstrumentLoopMember", back_populates="loop")


class InstrumentLoopMember(Base):
    __tablename__ = "instrument_loop_members"
    __table_args__ = (
        UniqueConstraint("loop_id", "instrument_id", name="uq_instrument_loop_members_loop_instrument"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, nullable=False, index=True)
    loop_id = Column(Integer, ForeignKey("instrument_loops.id"), nullable=False, index=True)
    instrument_id = Column(Integer, ForeignKey("instruments.id"), nullable=False, index=True)

    loop = relationship("InstrumentLoop", back_populates="members")
    instrument = relationship("Instrument", back_populates="loop_memberships")
