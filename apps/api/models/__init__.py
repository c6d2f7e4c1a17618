"""Models package."""

from .sheet import Sheet
from .instrument import Instrument, InstrumentDatasheetLink
from .instrument_loop import InstrumentLoop, InstrumentLoopMember
from .sheet_instrument_snapshot import SheetInstrumentSnapshot
from .sheet_instrument_snapshot_queue import SheetInstrumentSnapshotQueueEntry
