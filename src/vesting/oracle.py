"""Block oracle — supplies the height/time reference for trigger checks.

The engine never reads a clock itself. Sweep takes an explicit BlockInfo,
and the service asks an oracle for one when the caller does not pass it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, runtime_checkable

from vesting.models.obligation import BlockInfo


@runtime_checkable
class BlockOracle(Protocol):
    """Anything that can report the current block."""

    def current(self) -> BlockInfo:
        ...


class FixedBlockOracle:
    """Oracle pinned to an explicit block; advanced by hand.

    Usage:
        oracle = FixedBlockOracle(BlockInfo(height=1, time=start))
        oracle.advance()          # next block, +5 seconds
        oracle.advance(blocks=10)
    """

    def __init__(self, block: BlockInfo, seconds_per_block: int = 5) -> None:
        if seconds_per_block <= 0:
            raise ValueError(f"seconds_per_block must be positive, got {seconds_per_block}")
        self._block = block
        self._seconds_per_block = seconds_per_block

    def current(self) -> BlockInfo:
        return self._block

    def set(self, block: BlockInfo) -> None:
        self._block = block

    def advance(self, blocks: int = 1) -> BlockInfo:
        """Move forward ``blocks`` blocks, time advancing with them."""
        if blocks < 0:
            raise ValueError("Cannot move the chain backwards")
        self._block = BlockInfo(
            height=self._block.height + blocks,
            time=self._block.time + timedelta(seconds=self._seconds_per_block * blocks),
        )
        return self._block


class ClockBlockOracle:
    """Derives the block from wall-clock time.

    height = whole block intervals elapsed since ``genesis_time``
    (0 before genesis).
    """

    def __init__(
        self,
        genesis_time: datetime,
        block_seconds: int,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if genesis_time.tzinfo is None:
            raise ValueError("genesis_time must be timezone-aware")
        if block_seconds <= 0:
            raise ValueError(f"block_seconds must be positive, got {block_seconds}")
        self._genesis_time = genesis_time
        self._block_seconds = block_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def current(self) -> BlockInfo:
        now = self._clock()
        elapsed = (now - self._genesis_time).total_seconds()
        height = max(0, int(elapsed // self._block_seconds))
        return BlockInfo(height=height, time=now)
