#!/usr/bin/env python3
"""Vesting invariant checks against a persisted store and event log.

Usage:
    python3 tools/check_invariants.py
    python3 tools/check_invariants.py data/store.json data/events.jsonl
"""

import hashlib
import json
import sys
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
STORE_PATH = ROOT / "data" / "store.json"
EVENTS_PATH = ROOT / "data" / "events.jsonl"

SETTLING_KINDS = ("sweep_completed", "obligation_stopped")
ROLLBACK_KIND = "operation_rolled_back"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def load_events(path: Path, errors: list[str]) -> list[dict]:
    """Read the JSONL log, recording hash mismatches as errors."""
    events = []
    with path.open("r", encoding="utf-8") as handle:
        for line_num, line in enumerate(handle, 1):
            line = line.strip()
            if not line:
                continue
            data = json.loads(line)
            canonical = json.dumps(
                {
                    "event_id": data["event_id"],
                    "event_kind": data["event_kind"],
                    "timestamp_utc": data["timestamp_utc"],
                    "actor_id": data["actor_id"],
                    "payload": data["payload"],
                },
                sort_keys=True,
                ensure_ascii=False,
            ).encode("utf-8")
            expected = f"sha256:{hashlib.sha256(canonical).hexdigest()}"
            if data["event_hash"] != expected:
                errors.append(f"event log line {line_num}: hash mismatch for {data['event_id']}")
            events.append(data)
    return events


def check_store(store: dict, errors: list[str]) -> dict[int, dict]:
    """Structural invariants of the store document."""
    config = store.get("config")
    if not config or not config.get("owner"):
        errors.append("config.owner must be set")

    records: dict[int, dict] = {}
    previous = 0
    for record in store.get("obligations", []):
        oid = record.get("id")
        if not isinstance(oid, int) or oid <= 0:
            errors.append(f"invalid obligation id: {oid!r}")
            continue
        if oid in records:
            errors.append(f"duplicate obligation id: {oid}")
        if oid <= previous:
            errors.append(f"obligations out of ascending id order at {oid}")
        previous = oid
        records[oid] = record

        if record.get("paid") and record.get("stopped"):
            errors.append(f"obligation {oid} is both paid and stopped")
        amount = record.get("asset", {}).get("amount")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            errors.append(f"obligation {oid} has non-positive amount: {amount!r}")
        kind = record.get("asset", {}).get("kind")
        if kind not in ("native", "token"):
            errors.append(f"obligation {oid} has unknown asset kind: {kind!r}")

    last_id = store.get("last_id", 0)
    if records and last_id < max(records):
        errors.append(f"last_id {last_id} is behind largest id {max(records)}")
    return records


def check_events(records: dict[int, dict], events: list[dict], errors: list[str]) -> None:
    """Exactly-once settlement: each terminal obligation has one settling event.

    Settling events cancelled by an operation_rolled_back event are ignored.
    """
    known_ids = {event["event_id"] for event in events}
    cancelled: set[str] = set()
    for event in events:
        if event["event_kind"] != ROLLBACK_KIND:
            continue
        target = event["payload"].get("rolled_back_event_id")
        if target not in known_ids:
            errors.append(f"{event['event_id']} rolls back unknown event {target!r}")
        cancelled.add(target)

    settled: dict[int, list[str]] = {}
    for event in events:
        if event["event_kind"] not in SETTLING_KINDS or event["event_id"] in cancelled:
            continue
        for oid in event["payload"].get("obligation_ids", []):
            settled.setdefault(oid, []).append(event["event_id"])

    for oid, event_ids in settled.items():
        if len(event_ids) > 1:
            errors.append(f"obligation {oid} settled more than once: {', '.join(event_ids)}")
        if oid not in records:
            errors.append(f"event references unknown obligation {oid}")

    for oid, record in records.items():
        if (record.get("paid") or record.get("stopped")) and oid not in settled:
            errors.append(f"obligation {oid} is terminal but has no settling event")
        if not (record.get("paid") or record.get("stopped")) and oid in settled:
            errors.append(f"obligation {oid} has a settling event but is still pending")


def check(store_path: Optional[Path] = None, events_path: Optional[Path] = None) -> int:
    store_path = store_path or STORE_PATH
    events_path = events_path or EVENTS_PATH
    errors: list[str] = []

    if not store_path.exists():
        print(f"No store at {store_path} — nothing to check.")
        return 0

    records = check_store(load_json(store_path), errors)
    if events_path.exists():
        check_events(records, load_events(events_path, errors), errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    args = [Path(a) for a in sys.argv[1:3]]
    raise SystemExit(check(*args))
