"""Obligation store — durable payment records plus the id counter.

The store is a pure data-access layer. It holds three things:
1. Obligation records keyed by id (never deleted).
2. The monotonic id counter (never reset, never reuses a value).
3. The singleton configuration slot (owner).

Every read and write runs inside ``transaction()``. The outermost
transaction of a file-backed store takes an exclusive lock on a sidecar
``<store>.lock`` file and reloads the document from disk before the block
runs, so separate handles (other processes, or other ObligationStore
instances on the same file) never act on a stale copy. The block's changes
are snapshot-protected: if it raises, the snapshot is restored. A changed
document is written to disk exactly once, before the lock is released.
A rejected or failed operation therefore never leaves a partial commit
behind, in memory or on disk.
"""

from __future__ import annotations

import fcntl
import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from vesting.errors import InvalidObligation
from vesting.models.obligation import Config, Obligation

STORE_FORMAT_VERSION = 1

_Snapshot = tuple[dict[int, Obligation], int, Optional[Config]]


class ObligationStore:
    """Key-value store for obligations with optional JSON file persistence.

    Usage:
        store = ObligationStore(storage_path=Path("data/store.json"))
        with store.transaction():
            oid = store.allocate_id()
            store.put(oid, Obligation.from_entry(oid, entry))
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._obligations: dict[int, Obligation] = {}
        self._last_id = 0
        self._config: Optional[Config] = None
        self._lock = threading.RLock()
        self._depth = 0
        self._dirty = False

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    # ------------------------------------------------------------------
    # Obligation contract
    # ------------------------------------------------------------------

    def allocate_id(self) -> int:
        """Return a fresh id strictly greater than every previous one."""
        with self.transaction():
            self._last_id += 1
            self._dirty = True
            return self._last_id

    def put(self, obligation_id: int, obligation: Obligation) -> None:
        """Insert or totally replace the record at ``obligation_id``."""
        if obligation.id != obligation_id:
            raise ValueError(
                f"Record id {obligation.id} does not match key {obligation_id}"
            )
        with self.transaction():
            if obligation_id > self._last_id:
                raise ValueError(
                    f"Obligation id {obligation_id} was never allocated "
                    f"(last allocated: {self._last_id})"
                )
            self._obligations[obligation_id] = obligation
            self._dirty = True

    def get(self, obligation_id: int) -> Optional[Obligation]:
        with self.transaction():
            return self._obligations.get(obligation_id)

    def scan(
        self,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Obligation]:
        """Return records in ascending id order.

        ``start_after`` excludes ids up to and including it; ``limit``
        caps the number of records returned.
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        with self.transaction():
            ids = sorted(self._obligations)
            if start_after is not None:
                ids = [i for i in ids if i > start_after]
            if limit is not None:
                ids = ids[:limit]
            return [self._obligations[i] for i in ids]

    def compare_and_set(
        self,
        obligation_id: int,
        expected: Obligation,
        new: Obligation,
    ) -> bool:
        """Replace the record only if it still equals ``expected``."""
        with self.transaction():
            if self._obligations.get(obligation_id) != expected:
                return False
            self.put(obligation_id, new)
            return True

    @property
    def count(self) -> int:
        with self.transaction():
            return len(self._obligations)

    @property
    def last_id(self) -> int:
        """Most recently allocated id (0 before the first allocation)."""
        with self.transaction():
            return self._last_id

    # ------------------------------------------------------------------
    # Configuration slot
    # ------------------------------------------------------------------

    def load_config(self) -> Optional[Config]:
        with self.transaction():
            return self._config

    def save_config(self, config: Config) -> None:
        with self.transaction():
            self._config = config
            self._dirty = True

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(
        self,
        on_rollback: Optional[Callable[[], None]] = None,
    ) -> Iterator[ObligationStore]:
        """Run a block atomically against the store.

        Nested transactions join the outermost one; each level restores
        its own entry snapshot if its block raises. The outermost level
        holds the file lock, reloads from disk on entry, and flushes a
        changed document on clean exit. A failed flush (OSError) restores
        the snapshot, runs ``on_rollback`` while the file lock is still
        held (transactions it opens join this one), and propagates.
        ``on_rollback`` is ignored on nested levels.
        """
        with self._lock:
            if self._depth > 0:
                snapshot = self._snapshot()
                self._depth += 1
                try:
                    yield self
                except BaseException:
                    self._restore(snapshot)
                    raise
                finally:
                    self._depth -= 1
                return

            with self._file_lock():
                if self._storage_path is not None and self._storage_path.exists():
                    self._load_from_file(self._storage_path)
                snapshot = self._snapshot()
                self._dirty = False
                self._depth = 1
                try:
                    try:
                        yield self
                    except BaseException:
                        self._restore(snapshot)
                        raise
                    if self._dirty:
                        try:
                            self._flush()
                        except OSError:
                            self._restore(snapshot)
                            if on_rollback is not None:
                                on_rollback()
                            raise
                finally:
                    self._depth = 0
                    self._dirty = False

    @contextmanager
    def _file_lock(self) -> Iterator[None]:
        """Exclusive advisory lock on ``<store>.lock`` (no-op in memory)."""
        if self._storage_path is None:
            yield
            return
        lock_path = self._storage_path.with_name(self._storage_path.name + ".lock")
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            # Closing the descriptor releases the flock
            os.close(fd)

    def _snapshot(self) -> _Snapshot:
        return dict(self._obligations), self._last_id, self._config

    def _restore(self, snapshot: _Snapshot) -> None:
        obligations, last_id, config = snapshot
        self._obligations = obligations
        self._last_id = last_id
        self._config = config

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        """The in-memory state as a JSON document (no disk refresh)."""
        with self._lock:
            return {
                "version": STORE_FORMAT_VERSION,
                "config": self._config.to_dict() if self._config else None,
                "last_id": self._last_id,
                "obligations": [
                    self._obligations[i].to_dict() for i in sorted(self._obligations)
                ],
            }

    def _flush(self) -> None:
        """Atomically write the whole document (temp file + rename)."""
        if self._storage_path is None:
            return
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(self.to_document(), f, indent=2, sort_keys=True)
            f.write("\n")
        os.replace(tmp, self._storage_path)

    def _load_from_file(self, path: Path) -> None:
        """Load a store document. Fail-closed on any inconsistency."""
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Store document must be a JSON object: {path}")

        version = data.get("version")
        if version != STORE_FORMAT_VERSION:
            raise ValueError(f"Unsupported store format version: {version!r}")

        obligations: dict[int, Obligation] = {}
        for raw in data.get("obligations", []):
            try:
                record = Obligation.from_dict(raw)
            except InvalidObligation as e:
                raise ValueError(f"Corrupt obligation record in store: {e}") from e
            if record.id in obligations:
                raise ValueError(f"Duplicate obligation id in store: {record.id}")
            obligations[record.id] = record

        last_id = int(data.get("last_id", 0))
        if obligations and last_id < max(obligations):
            raise ValueError(
                f"Store counter ({last_id}) is behind the largest stored id "
                f"({max(obligations)}), refusing to load"
            )

        raw_config = data.get("config")
        config = Config.from_dict(raw_config) if raw_config else None
        self._config = config
        self._obligations = obligations
        self._last_id = last_id
