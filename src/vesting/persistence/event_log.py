"""Append-only event log — the audit trail of every schedule change.

Each record is stamped with a SHA-256 digest over its canonical JSON form
(sorted keys, every field except the digest itself). The log serves as:
1. The audit trail for paid, stopped, and pending obligations.
2. The record of every transfer instruction handed to an executor,
   including executor failures the engine deliberately does not retry.

Audit invariant: no obligation changes state without an event. The
service appends the event inside the same store transaction as the change,
so a failed append rolls the change back. If the store then fails to
flush, an ``operation_rolled_back`` event names the event it cancels.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

_HASHED_FIELDS = ("event_id", "event_kind", "timestamp_utc", "actor_id", "payload")


class EventKind(str, enum.Enum):
    """Classification of vesting events."""
    SCHEDULE_INITIALIZED = "schedule_initialized"
    OBLIGATIONS_ADDED = "obligations_added"
    SWEEP_COMPLETED = "sweep_completed"
    OBLIGATION_STOPPED = "obligation_stopped"
    OWNER_UPDATED = "owner_updated"
    # Compensation for an audited change whose store flush failed
    OPERATION_ROLLED_BACK = "operation_rolled_back"
    # Executor outcomes
    TRANSFER_EXECUTED = "transfer_executed"
    TRANSFER_FAILED = "transfer_failed"


def _digest(fields: dict[str, Any]) -> str:
    body = {name: fields[name] for name in _HASHED_FIELDS}
    encoded = json.dumps(body, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return "sha256:" + hashlib.sha256(encoded).hexdigest()


@dataclass(frozen=True)
class EventRecord:
    """One immutable audit entry.

    ``event_hash`` is computed by create() and checked again by
    from_dict() whenever a record is read back from disk.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @classmethod
    def create(
        cls,
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        stamp = (timestamp_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        fields = {
            "event_id": event_id,
            "event_kind": event_kind.value,
            "timestamp_utc": stamp,
            "actor_id": actor_id,
            "payload": payload,
        }
        return cls(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=stamp,
            actor_id=actor_id,
            payload=payload,
            event_hash=_digest(fields),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRecord:
        """Rebuild a stored record. Raises ValueError if its digest is wrong."""
        expected = _digest(data)
        if data.get("event_hash") != expected:
            raise ValueError(
                f"Integrity check failed: event {data.get('event_id')} "
                f"stored hash {data.get('event_hash')} != computed {expected}"
            )
        return cls(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )

    @property
    def obligation_ids(self) -> list[int]:
        return list(self.payload.get("obligation_ids", ()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only audit log, optionally mirrored to a JSONL file.

    Records are indexed by event id (replay protection) and by every
    obligation id their payload names.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._records: list[EventRecord] = []
        self._by_id: dict[str, EventRecord] = {}
        self._by_obligation: dict[int, list[EventRecord]] = {}

        if storage_path is not None and storage_path.exists():
            for line_num, record in self._read(storage_path):
                if record.event_id in self._by_id:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {record.event_id}"
                    )
                self._index(record)

    def append(self, event: EventRecord) -> None:
        """Add ``event`` to the end of the log.

        A duplicate event id raises ValueError. The file is written first,
        so a failed write leaves the in-memory log unchanged.
        """
        if event.event_id in self._by_id:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        if self._storage_path is not None:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            line = json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False)
            with self._storage_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        self._index(event)

    def refresh(self) -> int:
        """Index records other writers appended to the file since loading.

        Returns how many were added. A known event id whose stored digest
        differs from the indexed one raises ValueError.
        """
        if self._storage_path is None or not self._storage_path.exists():
            return 0
        added = 0
        for line_num, record in self._read(self._storage_path):
            known = self._by_id.get(record.event_id)
            if known is None:
                self._index(record)
                added += 1
            elif known.event_hash != record.event_hash:
                raise ValueError(
                    f"Event {record.event_id} differs on disk (line {line_num})"
                )
        return added

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._records)
        return [record for record in self._records if record.event_kind == kind]

    def events_for_obligation(self, obligation_id: int) -> list[EventRecord]:
        """Every event whose payload lists ``obligation_id``, oldest first."""
        return list(self._by_obligation.get(obligation_id, ()))

    @property
    def count(self) -> int:
        return len(self._records)

    @property
    def last_event(self) -> Optional[EventRecord]:
        if not self._records:
            return None
        return self._records[-1]

    def _index(self, record: EventRecord) -> None:
        self._records.append(record)
        self._by_id[record.event_id] = record
        for oid in record.obligation_ids:
            self._by_obligation.setdefault(oid, []).append(record)

    @staticmethod
    def _read(path: Path) -> Iterator[tuple[int, EventRecord]]:
        """Yield (line number, record) pairs, verifying each digest."""
        with path.open("r", encoding="utf-8") as handle:
            for line_num, raw in enumerate(handle, 1):
                if not raw.strip():
                    continue
                try:
                    record = EventRecord.from_dict(json.loads(raw))
                except ValueError as e:
                    raise ValueError(f"Event log line {line_num}: {e}") from e
                yield line_num, record
