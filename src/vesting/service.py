"""Vesting service — unified facade for the disbursement engine.

This is the primary interface for programmatic access to the engine.
It orchestrates:
- Schedule lifecycle (initialize, add obligations, sweep, stop)
- Ownership (update owner)
- Audit trail (append-only event log)
- Settlement (hands emitted instructions to a TransferExecutor)

All operations produce typed results. Every state change and its audit
event commit together inside one store transaction: if the audit append
fails the change is rolled back (fail-closed, no unaudited payouts).

Settlement happens after commit. An executor failure is recorded in the
audit log and reported in the result, but the obligation stays paid and
is never swept again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from vesting.engine.disbursement import DisbursementEngine, ScheduleInput
from vesting.errors import NotFound, NotInitialized, VestingError
from vesting.models.obligation import BlockInfo, Config, Obligation
from vesting.models.transfer import Response
from vesting.oracle import BlockOracle
from vesting.persistence.event_log import EventKind, EventLog, EventRecord
from vesting.persistence.obligation_store import ObligationStore
from vesting.settlement.executor import TransferExecutor, TransferReceipt

ANONYMOUS_CALLER = "anyone"


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    code: Optional[str] = None


class _AuditFailure(Exception):
    """Raised inside a transaction to roll it back when auditing fails."""


class VestingService:
    """Vesting engine facade.

    Usage:
        service = VestingService(ObligationStore(), event_log=EventLog())
        service.initialize("owner", schedule)
        result = service.sweep(BlockInfo(height=5, time=now))
        result.data["messages"]   # instructions handed to the executor

    Persistence (optional):
        service = VestingService(
            ObligationStore(storage_path=data / "store.json"),
            event_log=EventLog(storage_path=data / "events.jsonl"),
            executor=OutboxExecutor(data / "outbox.jsonl"),
            oracle=settings.block_oracle(),
        )
    """

    def __init__(
        self,
        store: ObligationStore,
        event_log: Optional[EventLog] = None,
        executor: Optional[TransferExecutor] = None,
        oracle: Optional[BlockOracle] = None,
    ) -> None:
        self._store = store
        self._engine = DisbursementEngine(store)
        self._event_log = event_log
        self._executor = executor
        self._oracle = oracle
        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0

    @property
    def engine(self) -> DisbursementEngine:
        return self._engine

    # ------------------------------------------------------------------
    # State-changing operations
    # ------------------------------------------------------------------

    def initialize(
        self,
        owner: str,
        schedule: Iterable[ScheduleInput] = (),
    ) -> ServiceResult:
        """Set the owner and store the initial schedule."""
        return self._run(
            lambda: self._engine.initialize(owner, list(schedule)),
            EventKind.SCHEDULE_INITIALIZED,
            actor_id=owner,
        )

    def add_obligations(
        self,
        caller: str,
        schedule: Iterable[ScheduleInput],
    ) -> ServiceResult:
        """Append obligations (owner only)."""
        return self._run(
            lambda: self._engine.add_obligations(caller, list(schedule)),
            EventKind.OBLIGATIONS_ADDED,
            actor_id=caller,
        )

    def sweep(
        self,
        block: Optional[BlockInfo] = None,
        caller: Optional[str] = None,
    ) -> ServiceResult:
        """Pay every obligation payable at ``block`` (or the oracle's block).

        A sweep that pays nothing succeeds without writing an audit event.
        """
        if block is None:
            if self._oracle is None:
                return ServiceResult(
                    success=False,
                    errors=["No block given and no block oracle configured"],
                    code="no_block",
                )
            block = self._oracle.current()

        return self._run(
            lambda: self._engine.sweep(block),
            EventKind.SWEEP_COMPLETED,
            actor_id=caller or ANONYMOUS_CALLER,
            extra={"block": block.to_dict()},
            skip_audit_if_empty=True,
        )

    def stop_payment(self, caller: str, obligation_id: int) -> ServiceResult:
        """Cancel a pending obligation; refund goes to the owner."""
        return self._run(
            lambda: self._engine.stop_payment(caller, obligation_id),
            EventKind.OBLIGATION_STOPPED,
            actor_id=caller,
        )

    def update_owner(self, caller: str, new_owner: str) -> ServiceResult:
        """Transfer ownership. No delay, no two-step handoff."""
        return self._run(
            lambda: self._engine.update_owner(caller, new_owner),
            EventKind.OWNER_UPDATED,
            actor_id=caller,
            extra={"previous_owner": caller, "new_owner": new_owner},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_obligations(
        self,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Obligation]:
        """Full lifecycle audit view, ascending id order."""
        return self._engine.list_obligations(start_after=start_after, limit=limit)

    def get_obligation(self, obligation_id: int) -> Optional[Obligation]:
        try:
            return self._engine.get_obligation(obligation_id)
        except NotFound:
            return None

    def get_config(self) -> Optional[Config]:
        try:
            return self._engine.get_config()
        except NotInitialized:
            return None

    def status(self, block: Optional[BlockInfo] = None) -> dict[str, Any]:
        """Summary counts. ``payable_now`` needs a block or an oracle."""
        obligations = self._engine.list_obligations()
        config = self.get_config()
        self._sync_log()
        if block is None and self._oracle is not None:
            block = self._oracle.current()

        result: dict[str, Any] = {
            "initialized": config is not None,
            "owner": config.owner if config else None,
            "obligations": {
                "total": len(obligations),
                "pending": sum(1 for o in obligations if o.is_stoppable),
                "paid": sum(1 for o in obligations if o.paid),
                "stopped": sum(1 for o in obligations if o.stopped),
            },
            "last_id": self._store.last_id,
            "events": self._event_log.count if self._event_log is not None else 0,
        }
        if block is not None:
            result["block"] = block.to_dict()
            result["obligations"]["payable_now"] = sum(
                1 for o in obligations if o.is_payable(block)
            )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(
        self,
        action: Callable[[], Response],
        kind: EventKind,
        actor_id: str,
        extra: Optional[dict[str, Any]] = None,
        skip_audit_if_empty: bool = False,
    ) -> ServiceResult:
        """Run an engine action and its audit event in one transaction.

        Rejections become failed results with the error's code. Audit or
        persistence failures roll the whole operation back; an event
        already appended for a rolled-back change is cancelled by an
        ``operation_rolled_back`` event.
        """
        audited: list[EventRecord] = []
        rollback_errors: list[str] = []

        def _cancel_audited() -> None:
            for event in audited:
                err = self._record_rollback(event)
                if err:
                    rollback_errors.append(err)

        try:
            with self._store.transaction(on_rollback=_cancel_audited):
                response = action()
                if not (skip_audit_if_empty and not response.obligation_ids):
                    event, err = self._record_event(kind, actor_id, response, extra)
                    if err:
                        raise _AuditFailure(err)
                    if event is not None:
                        audited.append(event)
        except VestingError as e:
            return ServiceResult(success=False, errors=[str(e)], code=e.code)
        except _AuditFailure as e:
            return ServiceResult(success=False, errors=[str(e)], code="audit_failure")
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)], code="invalid_request")
        except OSError as e:
            return ServiceResult(
                success=False,
                errors=[f"Persistence failure: {e}", *rollback_errors],
                code="persistence_failure",
            )

        data: dict[str, Any] = response.to_dict()
        receipts, warnings = self._dispatch(response)
        if receipts:
            data["receipts"] = [r.to_dict() for r in receipts]
        if warnings:
            data["warnings"] = warnings
        return ServiceResult(success=True, data=data)

    def _dispatch(self, response: Response) -> tuple[list[TransferReceipt], list[str]]:
        """Hand committed instructions to the executor, one by one.

        Never un-pays or retries: a failed receipt is audited and reported.
        An executor that raises instead of reporting counts as a failure.
        """
        receipts: list[TransferReceipt] = []
        warnings: list[str] = []
        if self._executor is None or not response.messages:
            return receipts, warnings

        for obligation_id, message in zip(response.obligation_ids, response.messages):
            try:
                receipt = self._executor.execute(message)
            except Exception as e:
                receipt = TransferReceipt(
                    instruction=message,
                    success=False,
                    detail=f"Executor error: {type(e).__name__}: {e}",
                )
            receipts.append(receipt)

            kind = EventKind.TRANSFER_EXECUTED if receipt.success else EventKind.TRANSFER_FAILED
            _, err = self._append_event(
                kind,
                actor_id=self._executor.executor_id,
                payload={
                    "obligation_ids": [obligation_id],
                    "instruction": message.to_dict(),
                    "detail": receipt.detail,
                },
            )
            if err:
                warnings.append(
                    f"Audit degraded: {err}; transfer outcome for obligation "
                    f"{obligation_id} not recorded"
                )
        return receipts, warnings

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID.

        Call with the store transaction held, after _sync_log(), so handles
        sharing one log file never hand out the same id.
        """
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _sync_log(self) -> None:
        """Pick up events other handles appended to the shared log file."""
        if self._event_log is None:
            return
        self._event_log.refresh()
        self._event_counter = max(self._event_counter, self._event_log.count)

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        response: Response,
        extra: Optional[dict[str, Any]] = None,
    ) -> tuple[Optional[EventRecord], Optional[str]]:
        """Record the audit event for a committed operation."""
        payload: dict[str, Any] = {
            "obligation_ids": list(response.obligation_ids),
            "attributes": dict(response.attributes),
            "messages": [m.to_dict() for m in response.messages],
        }
        if extra:
            payload.update(extra)
        return self._append_event(kind, actor_id, payload)

    def _record_rollback(self, event: EventRecord) -> Optional[str]:
        """Cancel ``event``, whose state change never reached the store."""
        _, err = self._append_event(
            EventKind.OPERATION_ROLLED_BACK,
            actor_id=event.actor_id,
            payload={
                "rolled_back_event_id": event.event_id,
                "rolled_back_kind": event.event_kind.value,
                "obligation_ids": event.obligation_ids,
            },
        )
        if err:
            return f"Could not record rollback of {event.event_id}: {err}"
        return None

    def _append_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> tuple[Optional[EventRecord], Optional[str]]:
        """Append one event. Returns (event, None) or (None, error string)."""
        if self._event_log is None:
            return None, None
        try:
            with self._store.transaction():
                self._sync_log()
                event = EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    actor_id=actor_id,
                    payload=payload,
                )
                self._event_log.append(event)
        except (ValueError, OSError) as e:
            return None, f"Event log failure: {e}"
        return event, None
