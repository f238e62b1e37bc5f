"""Persistence layer — obligation store and audit event log."""

from vesting.persistence.event_log import EventKind, EventLog, EventRecord
from vesting.persistence.obligation_store import ObligationStore

__all__ = ["EventKind", "EventLog", "EventRecord", "ObligationStore"]
