"""Disbursement engine — the obligation lifecycle and the sweep algorithm.

Operations:
    initialize(owner, schedule)         → config + N obligations, no messages
    add_obligations(caller, schedule)   → owner only, N more obligations
    sweep(block)                        → anyone, pays every payable obligation
    stop_payment(caller, id)            → owner only, refunds to the owner
    update_owner(caller, new_owner)     → owner only, immediate handoff

Sweep is a two-phase snapshot-then-commit algorithm:
1. Take one snapshot of the store in ascending id order.
2. Select the obligations payable at the given block from that snapshot.
3. Mark each selected obligation paid with a compare-and-set against its
   snapshot record; anything changed since the snapshot is skipped.
4. Emit one transfer instruction per obligation actually marked.

Marking paid is decoupled from executor success. Once an instruction has
been emitted the obligation is paid, whatever the executor later reports,
and it is never selected again.

The engine is a pure state machine over the store — no audit events, no
executor calls. The service layer handles both.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Union

from vesting.errors import (
    AlreadyPaid,
    AlreadyStopped,
    InvalidObligation,
    NotFound,
    NotInitialized,
    Unauthorized,
    validate_principal,
)
from vesting.models.obligation import BlockInfo, Config, Obligation, ScheduleEntry
from vesting.models.transfer import Response, transfer_message
from vesting.persistence.obligation_store import ObligationStore

ScheduleInput = Union[ScheduleEntry, dict[str, Any]]


class DisbursementEngine:
    """Applies vesting operations to an ObligationStore.

    Usage:
        engine = DisbursementEngine(ObligationStore())
        engine.initialize("owner", [ScheduleEntry(...)])
        response = engine.sweep(BlockInfo(height=5, time=now))
        for message in response.messages:
            executor.execute(message)
    """

    def __init__(self, store: ObligationStore) -> None:
        self._store = store

    @property
    def store(self) -> ObligationStore:
        return self._store

    # ------------------------------------------------------------------
    # Schedule creation
    # ------------------------------------------------------------------

    def initialize(
        self,
        owner: str,
        schedule: Iterable[ScheduleInput] = (),
    ) -> Response:
        """Set the owner and store the initial schedule.

        No transfer instructions are emitted: obligations only pay out
        once their trigger has expired and a sweep runs.

        Raises:
            InvalidPrincipal: owner is not a valid address.
            InvalidObligation: a schedule entry is malformed.
            ValueError: the store is already initialized.
        """
        config = Config(owner=validate_principal(owner, "owner"))
        entries = _coerce_schedule(schedule)

        with self._store.transaction():
            if self._store.load_config() is not None:
                raise ValueError("Vesting schedule already initialized")
            self._store.save_config(config)
            ids = self._append(entries)

        return Response(
            attributes={"method": "instantiate", "owner": owner, "count": str(len(ids))},
            obligation_ids=ids,
        )

    def add_obligations(
        self,
        caller: str,
        schedule: Iterable[ScheduleInput],
    ) -> Response:
        """Append obligations to the schedule (owner only).

        Existing obligations are never touched.
        """
        entries = _coerce_schedule(schedule)
        with self._store.transaction():
            self._require_owner(caller)
            ids = self._append(entries)

        return Response(
            attributes={
                "method": "add_obligations",
                "count": str(len(ids)),
            },
            obligation_ids=ids,
        )

    def _append(self, entries: list[ScheduleEntry]) -> list[int]:
        # One allocate_id() per obligation, even within a batch
        ids: list[int] = []
        for entry in entries:
            oid = self._store.allocate_id()
            self._store.put(oid, Obligation.from_entry(oid, entry))
            ids.append(oid)
        return ids

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep(self, block: BlockInfo) -> Response:
        """Pay every obligation whose trigger has expired at ``block``.

        Callable by anyone: funds only ever move to recipients the owner
        already designated. An empty selection is a valid no-op.
        """
        with self._store.transaction():
            self._load_config()
            snapshot = self._store.scan()
            selected = [o for o in snapshot if o.is_payable(block)]

            messages = []
            paid_ids: list[int] = []
            for obligation in selected:
                if not self._store.compare_and_set(
                    obligation.id, obligation, obligation.mark_paid(),
                ):
                    continue
                messages.append(transfer_message(obligation.asset, obligation.recipient))
                paid_ids.append(obligation.id)

        return Response(
            messages=messages,
            attributes={"method": "pay", "paid": str(len(paid_ids))},
            obligation_ids=paid_ids,
        )

    def payable(self, block: BlockInfo) -> list[Obligation]:
        """Read-only preview of what a sweep at ``block`` would pay."""
        return [o for o in self._store.scan() if o.is_payable(block)]

    # ------------------------------------------------------------------
    # Stop / ownership
    # ------------------------------------------------------------------

    def stop_payment(self, caller: str, obligation_id: int) -> Response:
        """Cancel a pending obligation and refund its full asset to the owner.

        Checks run in order: Unauthorized, NotFound, AlreadyPaid,
        AlreadyStopped. Stopping a terminal obligation is an error,
        not a no-op.
        """
        with self._store.transaction():
            config = self._require_owner(caller)
            obligation = self._store.get(obligation_id)
            if obligation is None:
                raise NotFound(obligation_id)
            if obligation.paid:
                raise AlreadyPaid(obligation_id)
            if obligation.stopped:
                raise AlreadyStopped(obligation_id)

            self._store.put(obligation_id, obligation.mark_stopped())
            refund = transfer_message(obligation.asset, config.owner)

        return Response(
            messages=[refund],
            attributes={"method": "stop_payment", "id": str(obligation_id)},
            obligation_ids=[obligation_id],
        )

    def update_owner(self, caller: str, new_owner: str) -> Response:
        """Hand ownership to ``new_owner``. The caller's authority ends now."""
        with self._store.transaction():
            self._require_owner(caller)
            config = Config(owner=validate_principal(new_owner, "new owner"))
            self._store.save_config(config)

        return Response(attributes={"method": "update_owner", "owner": new_owner})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_obligations(
        self,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Obligation]:
        """All obligations (paid, stopped, pending) in ascending id order."""
        return self._store.scan(start_after=start_after, limit=limit)

    def get_obligation(self, obligation_id: int) -> Obligation:
        obligation = self._store.get(obligation_id)
        if obligation is None:
            raise NotFound(obligation_id)
        return obligation

    def get_config(self) -> Config:
        return self._load_config()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_config(self) -> Config:
        config = self._store.load_config()
        if config is None:
            raise NotInitialized()
        return config

    def _require_owner(self, caller: str) -> Config:
        config = self._load_config()
        if caller != config.owner:
            raise Unauthorized(caller)
        return config


def _coerce_schedule(schedule: Iterable[ScheduleInput]) -> list[ScheduleEntry]:
    """Validate the whole schedule up front so nothing is written on failure."""
    entries: list[ScheduleEntry] = []
    for index, item in enumerate(schedule):
        if isinstance(item, ScheduleEntry):
            entries.append(item)
        elif isinstance(item, dict):
            try:
                entries.append(ScheduleEntry.from_dict(item))
            except InvalidObligation as e:
                raise InvalidObligation(f"Schedule entry {index}: {e}") from e
        else:
            raise InvalidObligation(
                f"Schedule entry {index} must be a ScheduleEntry or dict, "
                f"got {type(item).__name__}"
            )
    return entries
