"""Settlement backends — executors for emitted transfer instructions."""

from vesting.settlement.executor import (
    BalanceExecutor,
    OutboxExecutor,
    TransferExecutor,
    TransferReceipt,
)

__all__ = [
    "BalanceExecutor",
    "OutboxExecutor",
    "TransferExecutor",
    "TransferReceipt",
]
