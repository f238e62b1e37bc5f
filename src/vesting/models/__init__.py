"""Core data models for the vesting engine."""

from vesting.models.obligation import (
    Asset,
    AssetKind,
    AtHeight,
    AtTime,
    BlockInfo,
    Config,
    NativeAsset,
    Never,
    Obligation,
    ScheduleEntry,
    TokenAsset,
    Trigger,
    TriggerKind,
    make_asset_key,
)
from vesting.models.transfer import (
    ContractCall,
    InstructionKind,
    NativeTransfer,
    Response,
    TransferInstruction,
)

__all__ = [
    "Asset",
    "AssetKind",
    "AtHeight",
    "AtTime",
    "BlockInfo",
    "Config",
    "NativeAsset",
    "Never",
    "Obligation",
    "ScheduleEntry",
    "TokenAsset",
    "Trigger",
    "TriggerKind",
    "make_asset_key",
    "ContractCall",
    "InstructionKind",
    "NativeTransfer",
    "Response",
    "TransferInstruction",
]
