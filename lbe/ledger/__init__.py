"""Record ledger, slot clock and worker journal."""

from lbe.ledger.bus import EventBus
from lbe.ledger.clock import SlotClock
from lbe.ledger.events import Event, EventType
from lbe.ledger.journal import EventJournal
from lbe.ledger.store import LedgerClient, RecordLedger

__all__ = ["Event", "EventType", "EventBus", "EventJournal", "LedgerClient", "RecordLedger", "SlotClock"]
