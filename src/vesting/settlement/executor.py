"""Transfer executors — the pluggable backends that actually move value.

The engine emits transfer instructions and stops there. Executors consume
those instructions and report success or failure independently. A failed
transfer never un-pays an obligation: the engine authorizes disbursement
exactly once, and retrying is the executor's (or an operator's) business.

Adding a new settlement backend = implement the TransferExecutor Protocol.
Zero changes to the engine or the store.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from vesting.models.transfer import (
    ContractCall,
    NativeTransfer,
    TOKEN_TRANSFER_ENTRY_POINT,
    TransferInstruction,
)


@dataclass(frozen=True)
class TransferReceipt:
    """What an executor reports back for one instruction."""
    instruction: TransferInstruction
    success: bool
    detail: str = ""
    executed_utc: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "instruction": self.instruction.to_dict(),
            "success": self.success,
            "detail": self.detail,
            "executed_utc": self.executed_utc.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }


@runtime_checkable
class TransferExecutor(Protocol):
    """Abstract contract for settlement backends."""

    @property
    def executor_id(self) -> str:
        """Unique identifier (e.g., 'balances', 'outbox')."""
        ...

    def execute(self, instruction: TransferInstruction) -> TransferReceipt:
        """Carry out one instruction. Must report failures, not raise them."""
        ...


def instruction_target(instruction: TransferInstruction) -> tuple[str, str, int]:
    """Return (recipient, asset key, amount) for an instruction."""
    if isinstance(instruction, NativeTransfer):
        return instruction.to_address, instruction.asset_key, instruction.amount
    if isinstance(instruction, ContractCall):
        return instruction.recipient, instruction.asset_key, instruction.amount
    raise TypeError(f"Unsupported instruction type: {type(instruction).__name__}")


class BalanceExecutor:
    """In-memory balance ledger that pays out of a single treasury holder.

    Balances are keyed by (holder, asset key), where the asset key is
    ``native:<denom>`` or ``token:<contract>``. An underfunded treasury
    produces a failed receipt.

    Usage:
        executor = BalanceExecutor(treasury="vesting")
        executor.fund("vesting", "native:ujuno", 10)
        receipt = executor.execute(NativeTransfer("alice", "ujuno", 1))
    """

    def __init__(self, treasury: str) -> None:
        self._treasury = treasury
        self._balances: dict[tuple[str, str], int] = {}

    @property
    def executor_id(self) -> str:
        return "balances"

    @property
    def treasury(self) -> str:
        return self._treasury

    def fund(self, holder: str, asset_key: str, amount: int) -> None:
        if amount <= 0:
            raise ValueError(f"Funding amount must be positive, got {amount}")
        key = (holder, asset_key)
        self._balances[key] = self._balances.get(key, 0) + amount

    def balance(self, holder: str, asset_key: str) -> int:
        return self._balances.get((holder, asset_key), 0)

    def execute(self, instruction: TransferInstruction) -> TransferReceipt:
        if isinstance(instruction, ContractCall) and instruction.entry_point != TOKEN_TRANSFER_ENTRY_POINT:
            return TransferReceipt(
                instruction=instruction,
                success=False,
                detail=f"Unsupported entry point: {instruction.entry_point}",
            )
        recipient, asset_key, amount = instruction_target(instruction)
        available = self.balance(self._treasury, asset_key)
        if available < amount:
            return TransferReceipt(
                instruction=instruction,
                success=False,
                detail=f"Insufficient {asset_key}: treasury holds {available}, needs {amount}",
            )
        self._balances[(self._treasury, asset_key)] = available - amount
        key = (recipient, asset_key)
        self._balances[key] = self._balances.get(key, 0) + amount
        return TransferReceipt(
            instruction=instruction,
            success=True,
            detail=f"Moved {amount} {asset_key} to {recipient}",
        )


class OutboxExecutor:
    """Queues instructions as JSON lines for a downstream relayer.

    The outbox is append-only. A write failure is reported in the receipt.
    """

    def __init__(self, outbox_path: Path) -> None:
        self._outbox_path = outbox_path

    @property
    def executor_id(self) -> str:
        return "outbox"

    @property
    def outbox_path(self) -> Path:
        return self._outbox_path

    def execute(self, instruction: TransferInstruction) -> TransferReceipt:
        now = datetime.now(timezone.utc)
        record = {
            "queued_utc": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "instruction": instruction.to_dict(),
        }
        try:
            self._outbox_path.parent.mkdir(parents=True, exist_ok=True)
            with self._outbox_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as e:
            return TransferReceipt(
                instruction=instruction,
                success=False,
                detail=f"Outbox write failed: {e}",
                executed_utc=now,
            )
        return TransferReceipt(
            instruction=instruction,
            success=True,
            detail=f"Queued to {self._outbox_path.name}",
            executed_utc=now,
        )

    def pending(self) -> list[dict]:
        """Return every queued record, oldest first."""
        if not self._outbox_path.exists():
            return []
        with self._outbox_path.open("r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
