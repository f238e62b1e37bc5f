"""Obligation models — assets, triggers, schedule entries, and config.

An obligation is a single scheduled payment: who gets paid, what, and when.
Assets and triggers are tagged unions. Exactly one variant is populated per
obligation, so a record can never carry both a native denomination and a
token contract, or neither.

Invariants enforced by these models:
- Amounts are positive integers (base units, no floats in finance).
- ``paid`` and ``stopped`` are one-way latches and are never both set.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Union

from vesting.errors import InvalidObligation, validate_principal


def _validate_amount(amount: object) -> int:
    # bool is an int subclass; True must not pass as 1
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidObligation(f"Amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise InvalidObligation(f"Amount must be positive, got {amount}")
    return amount


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise InvalidObligation(f"Trigger time must be timezone-aware: {value.isoformat()}")
    return value.astimezone(timezone.utc)


def format_time(value: datetime) -> str:
    """Render a UTC datetime as ISO-8601 with a trailing Z."""
    return _utc(value).isoformat().replace("+00:00", "Z")


def parse_time(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are rejected."""
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as e:
        raise InvalidObligation(f"Invalid timestamp: {raw!r}") from e
    return _utc(parsed)


# ------------------------------------------------------------------
# Block reference
# ------------------------------------------------------------------

@dataclass(frozen=True)
class BlockInfo:
    """The height/time reference a trigger is evaluated against."""
    height: int
    time: datetime

    def __post_init__(self) -> None:
        if isinstance(self.height, bool) or not isinstance(self.height, int) or self.height < 0:
            raise ValueError(f"Block height must be a non-negative integer, got {self.height!r}")
        object.__setattr__(self, "time", _utc(self.time))

    def to_dict(self) -> dict[str, Any]:
        return {"height": self.height, "time": format_time(self.time)}


# ------------------------------------------------------------------
# Assets
# ------------------------------------------------------------------

class AssetKind(str, enum.Enum):
    NATIVE = "native"
    TOKEN = "token"


def make_asset_key(kind: AssetKind, reference: str) -> str:
    """Balance-ledger key for an asset: ``native:<denom>`` or ``token:<contract>``."""
    return f"{kind.value}:{reference}"


@dataclass(frozen=True)
class NativeAsset:
    """Native chain currency, identified by its denomination."""
    denom: str
    amount: int

    def __post_init__(self) -> None:
        if not isinstance(self.denom, str) or not self.denom.strip():
            raise InvalidObligation("Native asset denom must not be empty")
        _validate_amount(self.amount)

    @property
    def kind(self) -> AssetKind:
        return AssetKind.NATIVE

    @property
    def asset_key(self) -> str:
        return make_asset_key(AssetKind.NATIVE, self.denom)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": AssetKind.NATIVE.value, "denom": self.denom, "amount": self.amount}


@dataclass(frozen=True)
class TokenAsset:
    """Fungible token held at a contract/issuer reference."""
    contract: str
    amount: int

    def __post_init__(self) -> None:
        try:
            validate_principal(self.contract, "token contract")
        except ValueError as e:
            raise InvalidObligation(str(e)) from e
        _validate_amount(self.amount)

    @property
    def kind(self) -> AssetKind:
        return AssetKind.TOKEN

    @property
    def asset_key(self) -> str:
        return make_asset_key(AssetKind.TOKEN, self.contract)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": AssetKind.TOKEN.value, "contract": self.contract, "amount": self.amount}


Asset = Union[NativeAsset, TokenAsset]


def asset_from_dict(data: dict[str, Any]) -> Asset:
    """Decode an asset dict by its ``kind`` discriminator."""
    if not isinstance(data, dict):
        raise InvalidObligation(f"Asset must be an object, got {type(data).__name__}")
    kind = data.get("kind")
    if kind == AssetKind.NATIVE.value:
        return NativeAsset(denom=data.get("denom", ""), amount=data.get("amount"))
    if kind == AssetKind.TOKEN.value:
        return TokenAsset(contract=data.get("contract", ""), amount=data.get("amount"))
    raise InvalidObligation(f"Unknown asset kind: {kind!r}")


# ------------------------------------------------------------------
# Triggers
# ------------------------------------------------------------------

class TriggerKind(str, enum.Enum):
    AT_HEIGHT = "at_height"
    AT_TIME = "at_time"
    NEVER = "never"


@dataclass(frozen=True)
class AtHeight:
    """Fires once the chain reaches ``height`` (inclusive)."""
    height: int

    def __post_init__(self) -> None:
        if isinstance(self.height, bool) or not isinstance(self.height, int) or self.height < 0:
            raise InvalidObligation(f"Trigger height must be a non-negative integer, got {self.height!r}")

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.AT_HEIGHT

    def is_expired(self, block: BlockInfo) -> bool:
        return block.height >= self.height

    def to_dict(self) -> dict[str, Any]:
        return {"kind": TriggerKind.AT_HEIGHT.value, "height": self.height}


@dataclass(frozen=True)
class AtTime:
    """Fires once block time reaches ``time`` (inclusive)."""
    time: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.time, datetime):
            raise InvalidObligation(f"Trigger time must be a datetime, got {self.time!r}")
        object.__setattr__(self, "time", _utc(self.time))

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.AT_TIME

    def is_expired(self, block: BlockInfo) -> bool:
        return block.time >= self.time

    def to_dict(self) -> dict[str, Any]:
        return {"kind": TriggerKind.AT_TIME.value, "time": format_time(self.time)}


@dataclass(frozen=True)
class Never:
    """Inert trigger: the obligation is only ever resolved by a stop."""

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.NEVER

    def is_expired(self, block: BlockInfo) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"kind": TriggerKind.NEVER.value}


Trigger = Union[AtHeight, AtTime, Never]


def trigger_from_dict(data: dict[str, Any] | None) -> Trigger:
    """Decode a trigger dict. A missing trigger means Never."""
    if data is None:
        return Never()
    if not isinstance(data, dict):
        raise InvalidObligation(f"Trigger must be an object, got {type(data).__name__}")
    kind = data.get("kind")
    if kind == TriggerKind.AT_HEIGHT.value:
        return AtHeight(height=data.get("height"))
    if kind == TriggerKind.AT_TIME.value:
        raw = data.get("time")
        if not isinstance(raw, str):
            raise InvalidObligation(f"Trigger time must be an ISO-8601 string, got {raw!r}")
        return AtTime(time=parse_time(raw))
    if kind == TriggerKind.NEVER.value:
        return Never()
    raise InvalidObligation(f"Unknown trigger kind: {kind!r}")


# ------------------------------------------------------------------
# Schedule entries and obligations
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ScheduleEntry:
    """A requested payment, before it has been assigned an id."""
    recipient: str
    asset: Asset
    trigger: Trigger = Never()

    def __post_init__(self) -> None:
        validate_principal(self.recipient, "recipient")
        if not isinstance(self.asset, (NativeAsset, TokenAsset)):
            raise InvalidObligation(f"Unsupported asset: {self.asset!r}")
        if not isinstance(self.trigger, (AtHeight, AtTime, Never)):
            raise InvalidObligation(f"Unsupported trigger: {self.trigger!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipient": self.recipient,
            "asset": self.asset.to_dict(),
            "trigger": self.trigger.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleEntry:
        if not isinstance(data, dict):
            raise InvalidObligation(f"Schedule entry must be an object, got {type(data).__name__}")
        asset = data.get("asset")
        if not isinstance(asset, dict):
            raise InvalidObligation("Schedule entry is missing its asset")
        return cls(
            recipient=data.get("recipient", ""),
            asset=asset_from_dict(asset),
            trigger=trigger_from_dict(data.get("trigger")),
        )


@dataclass(frozen=True)
class Obligation:
    """A stored payment obligation.

    Frozen — the store only ever holds whole records, and every change
    produces a new record via mark_paid() / mark_stopped().
    """
    id: int
    recipient: str
    asset: Asset
    trigger: Trigger
    paid: bool = False
    stopped: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
            raise InvalidObligation(f"Obligation id must be a positive integer, got {self.id!r}")
        if self.paid and self.stopped:
            raise InvalidObligation(f"Obligation {self.id} cannot be both paid and stopped")

    @classmethod
    def from_entry(cls, obligation_id: int, entry: ScheduleEntry) -> Obligation:
        return cls(
            id=obligation_id,
            recipient=entry.recipient,
            asset=entry.asset,
            trigger=entry.trigger,
        )

    @property
    def amount(self) -> int:
        return self.asset.amount

    def is_payable(self, block: BlockInfo) -> bool:
        return not self.paid and not self.stopped and self.trigger.is_expired(block)

    @property
    def is_stoppable(self) -> bool:
        return not self.paid and not self.stopped

    def mark_paid(self) -> Obligation:
        if self.paid or self.stopped:
            raise ValueError(f"Obligation {self.id} is not payable (paid={self.paid}, stopped={self.stopped})")
        return replace(self, paid=True)

    def mark_stopped(self) -> Obligation:
        if self.paid or self.stopped:
            raise ValueError(f"Obligation {self.id} is not stoppable (paid={self.paid}, stopped={self.stopped})")
        return replace(self, stopped=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipient": self.recipient,
            "asset": self.asset.to_dict(),
            "trigger": self.trigger.to_dict(),
            "paid": self.paid,
            "stopped": self.stopped,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Obligation:
        if not isinstance(data, dict):
            raise InvalidObligation(f"Obligation must be an object, got {type(data).__name__}")
        try:
            return cls(
                id=data["id"],
                recipient=data["recipient"],
                asset=asset_from_dict(data["asset"]),
                trigger=trigger_from_dict(data.get("trigger")),
                paid=bool(data.get("paid", False)),
                stopped=bool(data.get("stopped", False)),
            )
        except KeyError as e:
            raise InvalidObligation(f"Obligation record is missing field {e}") from e


@dataclass(frozen=True)
class Config:
    """Singleton configuration: the administrative owner."""
    owner: str

    def __post_init__(self) -> None:
        validate_principal(self.owner, "owner")

    def to_dict(self) -> dict[str, Any]:
        return {"owner": self.owner}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        if not isinstance(data, dict) or "owner" not in data:
            raise ValueError(f"Config must be an object with an owner, got {data!r}")
        return cls(owner=data["owner"])
