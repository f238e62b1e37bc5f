"""Tests for vesting models — proves obligation data invariants hold.

Proves:
- Amounts are positive integers; bools and floats are rejected.
- Assets and triggers decode by their kind discriminator.
- A missing trigger means Never.
- paid and stopped are one-way latches and never both set.
"""

import pytest
from datetime import datetime, timedelta, timezone

from vesting.errors import InvalidObligation, InvalidPrincipal
from vesting.models.obligation import (
    AtHeight,
    AtTime,
    BlockInfo,
    Config,
    NativeAsset,
    Never,
    Obligation,
    ScheduleEntry,
    TokenAsset,
    asset_from_dict,
    format_time,
    parse_time,
    make_asset_key,
    trigger_from_dict,
)
from vesting.models.transfer import (
    ContractCall,
    NativeTransfer,
    Response,
    instruction_from_dict,
    transfer_message,
)


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _block(height: int, time: datetime | None = None) -> BlockInfo:
    return BlockInfo(height=height, time=time or _now())


class TestAssets:
    def test_native_asset_key(self) -> None:
        asset = NativeAsset(denom="ujuno", amount=10)
        assert asset.asset_key == "native:ujuno"
        assert asset.to_dict() == {"kind": "native", "denom": "ujuno", "amount": 10}

    def test_token_asset_key(self) -> None:
        asset = TokenAsset(contract="juno1token", amount=7)
        assert asset.asset_key == "token:juno1token"

    @pytest.mark.parametrize("amount", [0, -1, True, 1.5, "3"])
    def test_bad_amounts_rejected(self, amount) -> None:
        with pytest.raises(InvalidObligation):
            NativeAsset(denom="u", amount=amount)

    def test_empty_denom_rejected(self) -> None:
        with pytest.raises(InvalidObligation):
            NativeAsset(denom="", amount=1)

    def test_blank_contract_rejected(self) -> None:
        with pytest.raises(InvalidObligation):
            TokenAsset(contract="  ", amount=1)

    def test_decode_by_kind(self) -> None:
        assert asset_from_dict({"kind": "native", "denom": "u", "amount": 1}) == NativeAsset("u", 1)
        assert asset_from_dict({"kind": "token", "contract": "c1", "amount": 2}) == TokenAsset("c1", 2)

    def test_key_helper_matches_assets(self) -> None:
        assert make_asset_key(NativeAsset("u", 1).kind, "u") == NativeAsset("u", 1).asset_key
        assert make_asset_key(TokenAsset("c1", 1).kind, "c1") == "token:c1"

    def test_non_object_asset_rejected(self) -> None:
        with pytest.raises(InvalidObligation, match="Asset must be an object"):
            asset_from_dict("native")

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(InvalidObligation, match="Unknown asset kind"):
            asset_from_dict({"kind": "nft", "amount": 1})


class TestTriggers:
    def test_at_height_is_inclusive(self) -> None:
        trigger = AtHeight(height=5)
        assert not trigger.is_expired(_block(4))
        assert trigger.is_expired(_block(5))
        assert trigger.is_expired(_block(6))

    def test_at_time_is_inclusive(self) -> None:
        trigger = AtTime(time=_now())
        assert not trigger.is_expired(_block(1, _now() - timedelta(seconds=1)))
        assert trigger.is_expired(_block(1, _now()))

    def test_never_never_fires(self) -> None:
        assert not Never().is_expired(_block(10**9))

    def test_naive_time_rejected(self) -> None:
        with pytest.raises(InvalidObligation):
            AtTime(time=datetime(2026, 1, 1))

    def test_negative_height_rejected(self) -> None:
        with pytest.raises(InvalidObligation):
            AtHeight(height=-1)

    def test_missing_trigger_is_never(self) -> None:
        assert trigger_from_dict(None) == Never()

    def test_decode_at_time(self) -> None:
        trigger = trigger_from_dict({"kind": "at_time", "time": "2026-03-01T12:00:00Z"})
        assert trigger == AtTime(time=_now())
        assert trigger.to_dict() == {"kind": "at_time", "time": "2026-03-01T12:00:00Z"}

    def test_unknown_trigger_rejected(self) -> None:
        with pytest.raises(InvalidObligation):
            trigger_from_dict({"kind": "whenever"})

    @pytest.mark.parametrize("raw", ["never", 7, ["at_height", 3]])
    def test_non_object_trigger_rejected(self, raw) -> None:
        with pytest.raises(InvalidObligation, match="Trigger must be an object"):
            trigger_from_dict(raw)


class TestTimeHelpers:
    def test_format_uses_z_suffix(self) -> None:
        assert format_time(_now()) == "2026-03-01T12:00:00Z"

    def test_parse_normalizes_offset(self) -> None:
        assert parse_time("2026-03-01T14:00:00+02:00") == _now()

    def test_parse_rejects_garbage(self) -> None:
        with pytest.raises(InvalidObligation):
            parse_time("tomorrow")

    def test_parse_rejects_naive(self) -> None:
        with pytest.raises(InvalidObligation):
            parse_time("2026-03-01T12:00:00")

    def test_block_rejects_negative_height(self) -> None:
        with pytest.raises(ValueError):
            BlockInfo(height=-1, time=_now())


class TestScheduleEntry:
    def test_default_trigger_is_never(self) -> None:
        entry = ScheduleEntry(recipient="bob", asset=NativeAsset("u", 1))
        assert entry.trigger == Never()

    def test_from_dict(self) -> None:
        entry = ScheduleEntry.from_dict({
            "recipient": "bob",
            "asset": {"kind": "native", "denom": "u", "amount": 3},
            "trigger": {"kind": "at_height", "height": 9},
        })
        assert entry == ScheduleEntry("bob", NativeAsset("u", 3), AtHeight(9))

    def test_missing_asset_rejected(self) -> None:
        with pytest.raises(InvalidObligation, match="asset"):
            ScheduleEntry.from_dict({"recipient": "bob"})

    def test_bad_recipient_rejected(self) -> None:
        with pytest.raises(InvalidPrincipal):
            ScheduleEntry(recipient="bo b", asset=NativeAsset("u", 1))

    def test_string_trigger_rejected(self) -> None:
        with pytest.raises(InvalidObligation):
            ScheduleEntry.from_dict({
                "recipient": "bob",
                "asset": {"kind": "native", "denom": "u", "amount": 3},
                "trigger": "never",
            })


class TestObligation:
    def _obligation(self, **kwargs) -> Obligation:
        defaults = dict(id=1, recipient="bob", asset=NativeAsset("u", 4), trigger=AtHeight(5))
        defaults.update(kwargs)
        return Obligation(**defaults)

    def test_payable_only_when_pending_and_expired(self) -> None:
        ob = self._obligation()
        assert not ob.is_payable(_block(4))
        assert ob.is_payable(_block(5))
        assert not ob.mark_paid().is_payable(_block(5))
        assert not ob.mark_stopped().is_payable(_block(5))

    def test_latches_are_one_way(self) -> None:
        paid = self._obligation().mark_paid()
        with pytest.raises(ValueError):
            paid.mark_paid()
        with pytest.raises(ValueError):
            paid.mark_stopped()

    def test_paid_and_stopped_never_both(self) -> None:
        with pytest.raises(InvalidObligation):
            self._obligation(paid=True, stopped=True)

    def test_id_must_be_positive(self) -> None:
        with pytest.raises(InvalidObligation):
            self._obligation(id=0)

    def test_dict_round_trip(self) -> None:
        ob = self._obligation(asset=TokenAsset("c1", 8), trigger=Never()).mark_stopped()
        assert Obligation.from_dict(ob.to_dict()) == ob

    @pytest.mark.parametrize("field", ["id", "recipient", "asset"])
    def test_record_missing_field_rejected(self, field) -> None:
        raw = self._obligation().to_dict()
        del raw[field]
        with pytest.raises(InvalidObligation, match=field):
            Obligation.from_dict(raw)

    def test_record_with_string_trigger_rejected(self) -> None:
        raw = self._obligation().to_dict()
        raw["trigger"] = "never"
        with pytest.raises(InvalidObligation):
            Obligation.from_dict(raw)

    def test_non_object_record_rejected(self) -> None:
        with pytest.raises(InvalidObligation):
            Obligation.from_dict([1, "bob"])

    def test_config_record_without_owner_rejected(self) -> None:
        with pytest.raises(ValueError):
            Config.from_dict({"admin": "alice"})

    def test_config_requires_principal(self) -> None:
        with pytest.raises(InvalidPrincipal):
            Config(owner="")


class TestTransferInstructions:
    def test_native_asset_becomes_native_transfer(self) -> None:
        message = transfer_message(NativeAsset("u", 1), "bob")
        assert message == NativeTransfer(to_address="bob", denom="u", amount=1)

    def test_token_asset_becomes_contract_call(self) -> None:
        message = transfer_message(TokenAsset("c1", 3), "bob")
        assert isinstance(message, ContractCall)
        assert message.to_dict() == {
            "kind": "contract_call",
            "contract": "c1",
            "entry_point": "transfer",
            "args": {"recipient": "bob", "amount": 3},
        }

    def test_instruction_decodes(self) -> None:
        message = transfer_message(TokenAsset("c1", 3), "bob")
        assert instruction_from_dict(message.to_dict()) == message

    def test_response_to_dict(self) -> None:
        response = Response(
            messages=[NativeTransfer("bob", "u", 1)],
            attributes={"method": "pay"},
            obligation_ids=[1],
        )
        assert response.to_dict()["obligation_ids"] == [1]
        assert response.to_dict()["messages"][0]["kind"] == "native_transfer"
