"""Transfer instructions — the only output the engine produces.

The engine never moves value itself. It emits instructions that an
external executor carries out:

    NativeTransfer   → send native currency to an address
    ContractCall     → invoke a token contract's ``transfer`` entry point

A Response bundles the ordered instructions of one operation with a small
set of string attributes describing what happened.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union

from vesting.models.obligation import Asset, AssetKind, NativeAsset, TokenAsset, make_asset_key

TOKEN_TRANSFER_ENTRY_POINT = "transfer"


class InstructionKind(str, enum.Enum):
    NATIVE_TRANSFER = "native_transfer"
    CONTRACT_CALL = "contract_call"


@dataclass(frozen=True)
class NativeTransfer:
    to_address: str
    denom: str
    amount: int

    @property
    def kind(self) -> InstructionKind:
        return InstructionKind.NATIVE_TRANSFER

    @property
    def asset_key(self) -> str:
        return make_asset_key(AssetKind.NATIVE, self.denom)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "to_address": self.to_address,
            "denom": self.denom,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class ContractCall:
    """A call to ``entry_point`` on ``contract``. Carries no attached funds."""
    contract: str
    entry_point: str
    recipient: str
    amount: int

    @property
    def kind(self) -> InstructionKind:
        return InstructionKind.CONTRACT_CALL

    @property
    def asset_key(self) -> str:
        return make_asset_key(AssetKind.TOKEN, self.contract)

    @property
    def args(self) -> dict[str, Any]:
        return {"recipient": self.recipient, "amount": self.amount}

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "contract": self.contract,
            "entry_point": self.entry_point,
            "args": self.args,
        }


TransferInstruction = Union[NativeTransfer, ContractCall]


def transfer_message(asset: Asset, to_address: str) -> TransferInstruction:
    """Build the instruction that moves ``asset`` to ``to_address``."""
    if isinstance(asset, NativeAsset):
        return NativeTransfer(to_address=to_address, denom=asset.denom, amount=asset.amount)
    if isinstance(asset, TokenAsset):
        return ContractCall(
            contract=asset.contract,
            entry_point=TOKEN_TRANSFER_ENTRY_POINT,
            recipient=to_address,
            amount=asset.amount,
        )
    raise TypeError(f"Unsupported asset type: {type(asset).__name__}")


def instruction_from_dict(data: dict[str, Any]) -> TransferInstruction:
    kind = data.get("kind")
    if kind == InstructionKind.NATIVE_TRANSFER.value:
        return NativeTransfer(
            to_address=data["to_address"],
            denom=data["denom"],
            amount=int(data["amount"]),
        )
    if kind == InstructionKind.CONTRACT_CALL.value:
        args = data.get("args", {})
        return ContractCall(
            contract=data["contract"],
            entry_point=data.get("entry_point", TOKEN_TRANSFER_ENTRY_POINT),
            recipient=args["recipient"],
            amount=int(args["amount"]),
        )
    raise ValueError(f"Unknown instruction kind: {kind!r}")


@dataclass(frozen=True)
class Response:
    """Outcome of one engine operation.

    ``obligation_ids`` names the obligations the operation created or
    settled. When messages are emitted the two lists line up: the i-th
    message pays (or refunds) the i-th obligation id.
    """
    messages: list[TransferInstruction] = field(default_factory=list)
    attributes: dict[str, str] = field(default_factory=dict)
    obligation_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "attributes": dict(self.attributes),
            "obligation_ids": list(self.obligation_ids),
        }
