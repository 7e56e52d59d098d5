"""Tests for the transaction controller pipeline."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import rlp
from eth_keys import keys

from conftest import (
    ONE,
    OTHER_KEY,
    SENDER_KEY,
    TX_HASH,
    FakeDevice,
    FakeNetworkHandler,
    address_of,
)
from shardwallet import address
from shardwallet.chains import CHAINS
from shardwallet.cli import render_result
from shardwallet.rpc.base import RPCMethod
from shardwallet.signing.base import SignerType
from shardwallet.signing.hardware import HardwareSigner
from shardwallet.signing.keystore import LocalKeystoreSigner
from shardwallet.transaction import staking
from shardwallet.transaction.controller import (
    Controller,
    ControllerBehavior,
    TransactionStatus,
)
from shardwallet.transaction.errors import (
    BroadcastFailedError,
    EncodingFailureError,
    InsufficientFundsError,
    RPCFailureError,
    SigningFailedError,
    VerificationMismatchError,
)

TESTNET = CHAINS["testnet"]


def _int(field: bytes) -> int:
    return int.from_bytes(field, "big")


def make_controller(handler, signer, sender, **behavior) -> Controller:
    sleep = behavior.pop("sleep", AsyncMock())
    return Controller(
        handler, signer, TESTNET, sender,
        behavior=ControllerBehavior(**behavior), sleep=sleep,
    )


class TestTransferPipeline:
    """Tests for execute_transfer."""

    @pytest.mark.asyncio
    async def test_end_to_end_transfer(self, handler, local_signer, sender, receiver):
        """Test balance 10, amount 1.5, nonce 0x2, gas price 1."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", Decimal("1.5"), 1, 0, 0)

        assert result.error is None
        assert result.status == TransactionStatus.SUBMITTED
        assert result.nonce == 2
        assert result.params["transfer-amount"] == 1_500_000_000_000_000_000
        assert result.params["gas-price"] == 10**9
        assert result.params["gas"] == 21000

        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 1
        sent = [p for m, p in handler.calls if m == RPCMethod.SEND_RAW_TRANSACTION][0]
        assert sent == [result.signature_hex]
        assert result.receipt_hash == TX_HASH

        output = render_result(controller, result)
        assert output == json.dumps({"transaction-receipt": TX_HASH})

    @pytest.mark.asyncio
    async def test_rpc_call_order(self, handler, local_signer, sender, receiver):
        """Test balance, nonce and broadcast are issued in pipeline order."""
        controller = make_controller(handler, local_signer, sender)
        await controller.execute_transfer(receiver, "", "1", 1, 0, 1)

        assert handler.methods() == [
            RPCMethod.GET_BALANCE,
            RPCMethod.GET_TRANSACTION_COUNT,
            RPCMethod.SEND_RAW_TRANSACTION,
        ]
        assert handler.calls[0][1] == [sender, "latest"]
        assert handler.calls[1][1] == [address.to_hex(address.parse(sender)), "latest"]

    @pytest.mark.asyncio
    async def test_signed_payload_carries_resolved_fields(self, local_signer, sender, receiver):
        """Test the broadcast bytes decode to the resolved params and sender."""
        handler = FakeNetworkHandler({RPCMethod.GET_TRANSACTION_COUNT: "0x1f"})
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", "2", 3, 1, 0)

        fields = rlp.decode(bytes.fromhex(result.signature_hex[2:]))
        nonce, gas_price, gas, shard, to_shard, to, value, data, v, r, s = fields
        assert _int(nonce) == 31
        assert _int(gas_price) == 3 * 10**9
        assert _int(gas) == 21000
        assert (_int(shard), _int(to_shard)) == (1, 0)
        assert to == address.parse(receiver)
        assert _int(value) == 2 * ONE
        assert data == b""

        recovery_id = _int(v) - TESTNET.value * 2 - 35
        signature = keys.Signature(vrs=(recovery_id, _int(r), _int(s)))
        tx = result.transaction
        recovered = signature.recover_public_key_from_msg_hash(tx.signing_hash(TESTNET.value))
        assert address.to_bech32(recovered.to_canonical_address()) == sender

    @pytest.mark.asyncio
    async def test_input_data_adds_gas(self, handler, local_signer, sender, receiver):
        """Test base64 input data is decoded and charged per byte."""
        controller = make_controller(handler, local_signer, sender)

        # b"\x00\x01\x02"
        result = await controller.execute_transfer(receiver, "AAEC", "1", 1, 0, 0)

        assert result.params["gas"] == 21000 + 4 + 68 * 2
        assert result.transaction.data == b"\x00\x01\x02"

    @pytest.mark.asyncio
    async def test_invalid_input_data(self, handler, local_signer, sender, receiver):
        """Test malformed base64 fails before any RPC."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "not base64!", "1", 1, 0, 0)

        assert isinstance(result.error, EncodingFailureError)
        assert result.error.step == "intrinsic-gas"
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_amount_truncated_to_nano(self, handler, local_signer, sender, receiver):
        """Test amounts below one nano-token are dropped by the double scaling."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", "0.0000000015", 1, 0, 0)

        assert result.params["transfer-amount"] == 10**9

    @pytest.mark.asyncio
    async def test_invalid_receiver(self, handler, local_signer, sender):
        """Test an unparsable receiver stops the pipeline before the nonce lookup."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer("one1notanaddress", "", "1", 1, 0, 0)

        assert isinstance(result.error, EncodingFailureError)
        assert result.error.step == "receiver"
        assert handler.count(RPCMethod.GET_TRANSACTION_COUNT) == 0
        assert result.signature_hex is None

    @pytest.mark.asyncio
    async def test_controller_is_single_use(self, handler, local_signer, sender, receiver):
        """Test a controller refuses to run a second pipeline."""
        controller = make_controller(handler, local_signer, sender)
        await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        with pytest.raises(RuntimeError):
            await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert handler.count(RPCMethod.GET_TRANSACTION_COUNT) == 1


class TestFailures:
    """Tests for fail-fast behavior."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["10.000000001", "11", "1000000"])
    async def test_insufficient_funds_never_broadcasts(self, handler, local_signer, sender, receiver, amount):
        """Test amounts above the balance fail without broadcast."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", amount, 1, 0, 0)

        assert isinstance(result.error, InsufficientFundsError)
        assert result.status == TransactionStatus.FAILED
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 0
        assert handler.count(RPCMethod.GET_TRANSACTION_COUNT) == 0
        assert result.signature_hex is None
        assert "not enough" in str(result.error)

    @pytest.mark.asyncio
    async def test_exact_balance_passes(self, handler, local_signer, sender, receiver):
        """Test transferring the whole balance is allowed."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", "10", 1, 0, 0)

        assert result.error is None

    @pytest.mark.asyncio
    async def test_balance_rpc_error(self, local_signer, sender, receiver, rpc_error):
        """Test a failing balance lookup is an RPC failure."""
        handler = FakeNetworkHandler({RPCMethod.GET_BALANCE: rpc_error})
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert isinstance(result.error, RPCFailureError)
        assert result.error.step == "balance"
        assert controller.failure is result.error
        assert handler.methods() == [RPCMethod.GET_BALANCE]

    @pytest.mark.asyncio
    async def test_nonce_rpc_error_fails_by_default(self, local_signer, sender, receiver, rpc_error):
        """Test a failing nonce lookup is fatal unless permissive."""
        handler = FakeNetworkHandler({RPCMethod.GET_TRANSACTION_COUNT: rpc_error})
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert isinstance(result.error, RPCFailureError)
        assert result.error.step == "nonce"
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 0

    @pytest.mark.asyncio
    async def test_permissive_nonce_falls_back_to_zero(self, local_signer, sender, receiver, rpc_error):
        """Test permissive mode substitutes nonce 0."""
        handler = FakeNetworkHandler({RPCMethod.GET_TRANSACTION_COUNT: rpc_error})
        controller = make_controller(handler, local_signer, sender, permissive_nonce=True)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert result.error is None
        assert result.nonce == 0

    @pytest.mark.asyncio
    async def test_broadcast_error(self, local_signer, sender, receiver, rpc_error):
        """Test a rejected broadcast is reported as BroadcastFailed."""
        handler = FakeNetworkHandler({RPCMethod.SEND_RAW_TRANSACTION: rpc_error})
        controller = make_controller(handler, local_signer, sender, confirmation_wait=10)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert isinstance(result.error, BroadcastFailedError)
        assert result.error.kind == "broadcast_failed"
        assert result.signature_hex is not None
        assert result.receipt_hash is None
        assert handler.count(RPCMethod.GET_TRANSACTION_RECEIPT) == 0

    def test_signer_must_match_signing_impl(self, handler, local_signer, sender):
        """Test constructing with a mismatched backend is rejected."""
        with pytest.raises(ValueError):
            make_controller(handler, local_signer, sender, signing_impl=SignerType.HARDWARE)


    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [Decimal("NaN"), Decimal("Infinity")])
    async def test_non_finite_amount(self, handler, local_signer, sender, receiver, amount):
        """Test a non-finite amount is an encoding failure, not an exception."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", amount, 1, 0, 0)

        assert isinstance(result.error, EncodingFailureError)
        assert result.error.step == "amount"
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_nan_gas_price(self, handler, local_signer, sender, receiver):
        """Test a NaN gas price fails the gas-price step."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", "1", Decimal("NaN"), 0, 0)

        assert isinstance(result.error, EncodingFailureError)
        assert result.error.step == "gas-price"
        assert handler.count(RPCMethod.GET_TRANSACTION_COUNT) == 0

    @pytest.mark.asyncio
    async def test_nan_commission_rate(self, handler, local_signer, sender):
        """Test a NaN commission rate fails while encoding the directive."""
        builder = staking.create_validator(
            validator_address=sender,
            description=staking.Description(name="v"),
            commission_rates=staking.CommissionRates(Decimal("NaN"), Decimal("0.9"), Decimal("0.05")),
            min_self_delegation="1",
            max_total_delegation="10",
            bls_public_keys=["ab" * 48],
            amount="1",
        )
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_staking(builder, 1)

        assert isinstance(result.error, EncodingFailureError)
        assert result.error.step == "intrinsic-gas"
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_zero_transfer_still_checks_balance(self, handler, local_signer, sender, receiver):
        """Test the balance is queried even when nothing is transferred."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_transfer(receiver, "", "0", 1, 0, 0)

        assert result.error is None
        assert handler.count(RPCMethod.GET_BALANCE) == 1

    @pytest.mark.asyncio
    async def test_local_key_for_other_account(self, handler, sender, receiver):
        """Test a keystore key that does not belong to the sender is rejected."""
        signer = LocalKeystoreSigner.from_private_key(OTHER_KEY)
        controller = make_controller(handler, signer, sender)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert isinstance(result.error, VerificationMismatchError)
        assert result.error.step == "sign"
        assert result.signature_hex is None
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 0


class TestDryRun:
    """Tests for dry-run mode."""

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, handler, local_signer, sender, receiver):
        """Test no broadcast or receipt RPC is issued in dry-run."""
        controller = make_controller(handler, local_signer, sender, dry_run=True, confirmation_wait=10)

        result = await controller.execute_transfer(receiver, "", "1.5", 1, 0, 0)

        assert result.error is None
        assert result.status == TransactionStatus.DRY_RUN
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 0
        assert handler.count(RPCMethod.GET_TRANSACTION_RECEIPT) == 0
        assert result.receipt_hash is None
        assert result.signature_hex is not None

    @pytest.mark.asyncio
    async def test_dry_run_output_is_transaction_json(self, handler, local_signer, sender, receiver):
        """Test the dry-run output is the signed transaction JSON."""
        controller = make_controller(handler, local_signer, sender, dry_run=True)
        result = await controller.execute_transfer(receiver, "", "1.5", 1, 0, 0)

        data = json.loads(render_result(controller, result))

        assert data["nonce"] == "0x2"
        assert data["value"] == hex(1_500_000_000_000_000_000)
        assert data["to"] == receiver
        assert data["hash"].startswith("0x")
        assert "v" in data and "r" in data and "s" in data


class TestConfirmation:
    """Tests for receipt polling."""

    @pytest.mark.asyncio
    async def test_timeout_is_pending_not_error(self, handler, local_signer, sender, receiver):
        """Test a 5 second window queries at t=0, 2, 4 and ends pending."""
        sleep = AsyncMock()
        controller = make_controller(
            handler, local_signer, sender, confirmation_wait=5, sleep=sleep
        )

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert result.error is None
        assert result.status == TransactionStatus.PENDING
        assert result.receipt is None
        assert result.receipt_hash == TX_HASH
        assert handler.count(RPCMethod.GET_TRANSACTION_RECEIPT) == 3
        assert sleep.await_count == 3
        sleep.assert_awaited_with(2)

    @pytest.mark.asyncio
    async def test_receipt_found_stops_polling(self, local_signer, sender, receiver):
        """Test polling stops as soon as a receipt is returned."""
        receipt = {"transactionHash": TX_HASH, "status": "0x1", "blockNumber": "0x10"}
        handler = FakeNetworkHandler({RPCMethod.GET_TRANSACTION_RECEIPT: [None, receipt]})
        sleep = AsyncMock()
        controller = make_controller(
            handler, local_signer, sender, confirmation_wait=30, sleep=sleep
        )

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert result.status == TransactionStatus.CONFIRMED
        assert result.receipt == receipt
        assert controller.receipt == receipt
        assert handler.count(RPCMethod.GET_TRANSACTION_RECEIPT) == 2
        assert sleep.await_count == 1
        assert json.loads(render_result(controller, result)) == receipt

    @pytest.mark.asyncio
    async def test_no_polling_without_wait(self, handler, local_signer, sender, receiver):
        """Test confirmation is skipped when the wait is zero."""
        controller = make_controller(handler, local_signer, sender)

        await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert handler.count(RPCMethod.GET_TRANSACTION_RECEIPT) == 0

    @pytest.mark.asyncio
    async def test_receipt_query_errors_keep_polling(self, local_signer, sender, receiver, rpc_error):
        """Test a failing receipt query does not fail a broadcast transaction."""
        handler = FakeNetworkHandler({RPCMethod.GET_TRANSACTION_RECEIPT: rpc_error})
        controller = make_controller(handler, local_signer, sender, confirmation_wait=4)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert result.error is None
        assert result.status == TransactionStatus.PENDING
        assert result.receipt_hash == TX_HASH
        assert handler.count(RPCMethod.GET_TRANSACTION_RECEIPT) == 2

    @pytest.mark.asyncio
    async def test_receipt_found_after_query_error(self, local_signer, sender, receiver, rpc_error):
        """Test polling recovers from a transient receipt query error."""
        receipt = {"transactionHash": TX_HASH, "status": "0x1"}
        handler = FakeNetworkHandler({RPCMethod.GET_TRANSACTION_RECEIPT: [rpc_error, receipt]})
        controller = make_controller(handler, local_signer, sender, confirmation_wait=10)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert result.status == TransactionStatus.CONFIRMED
        assert result.receipt == receipt


class TestHardwareSigning:
    """Tests for the hardware signing path."""

    @pytest.mark.asyncio
    async def test_matching_device_signs(self, handler, sender, receiver):
        """Test a device holding the sender key produces a broadcastable payload."""
        device = FakeDevice(SENDER_KEY)
        signer = HardwareSigner(device)
        controller = make_controller(handler, signer, sender, signing_impl=SignerType.HARDWARE)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert result.error is None
        assert len(device.requests) == 1
        preimage, chain_id = device.requests[0]
        assert chain_id == TESTNET.value
        assert preimage == result.transaction.signing_preimage(TESTNET.value)
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 1

    @pytest.mark.asyncio
    async def test_device_address_mismatch(self, handler, sender, receiver):
        """Test a device signing with another key is rejected before broadcast."""
        signer = HardwareSigner(FakeDevice(OTHER_KEY))
        controller = make_controller(handler, signer, sender, signing_impl=SignerType.HARDWARE)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert isinstance(result.error, VerificationMismatchError)
        assert result.signature_hex is None
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 0

    @pytest.mark.asyncio
    async def test_device_claims_wrong_address(self, handler, sender, receiver):
        """Test the device's claimed address is what gets verified."""
        signer = HardwareSigner(FakeDevice(SENDER_KEY, claimed_address=address_of(OTHER_KEY)))
        controller = make_controller(handler, signer, sender, signing_impl=SignerType.HARDWARE)

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert isinstance(result.error, VerificationMismatchError)

    @pytest.mark.asyncio
    async def test_device_error(self, handler, sender, receiver):
        """Test a device failure becomes a signing failure."""
        device = FakeDevice(SENDER_KEY)

        def rejected(preimage, chain_id):
            raise RuntimeError("user rejected on device")

        device.sign_transaction = rejected
        controller = make_controller(
            handler, HardwareSigner(device), sender, signing_impl=SignerType.HARDWARE
        )

        result = await controller.execute_transfer(receiver, "", "1", 1, 0, 0)

        assert isinstance(result.error, SigningFailedError)
        assert "user rejected" in str(result.error)
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 0


class TestStakingPipeline:
    """Tests for execute_staking."""

    @pytest.mark.asyncio
    async def test_delegate(self, handler, local_signer, sender):
        """Test a delegation is signed and sent as a staking transaction."""
        validator = address_of(OTHER_KEY)
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_staking(staking.delegate(sender, validator, "5"), 1)

        assert result.error is None
        assert handler.methods() == [
            RPCMethod.GET_BALANCE,
            RPCMethod.GET_TRANSACTION_COUNT,
            RPCMethod.SEND_RAW_STAKING_TRANSACTION,
        ]
        assert result.params["directive"].staked_amount == 5 * ONE

    @pytest.mark.asyncio
    async def test_delegate_more_than_balance(self, handler, local_signer, sender):
        """Test the staked amount is checked against the balance."""
        validator = address_of(OTHER_KEY)
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_staking(staking.delegate(sender, validator, "50"), 1)

        assert isinstance(result.error, InsufficientFundsError)
        assert handler.count(RPCMethod.SEND_RAW_STAKING_TRANSACTION) == 0

    @pytest.mark.asyncio
    async def test_collect_rewards(self, handler, local_signer, sender):
        """Test collect-rewards skips the balance check and encodes the directive."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_staking(staking.collect_rewards(sender), 1)

        assert result.error is None
        assert handler.count(RPCMethod.GET_BALANCE) == 0
        assert handler.count(RPCMethod.SEND_RAW_STAKING_TRANSACTION) == 1
        assert handler.count(RPCMethod.SEND_RAW_TRANSACTION) == 0

        fields = rlp.decode(bytes.fromhex(result.signature_hex[2:]))
        directive, payload, nonce = fields[0], fields[1], fields[2]
        assert _int(directive) == staking.Directive.COLLECT_REWARDS
        assert payload == [address.parse(sender)]
        assert _int(nonce) == 2
        assert result.params["from-shard"] == 0

    @pytest.mark.asyncio
    async def test_staking_gas_covers_payload(self, handler, local_signer, sender):
        """Test staking gas is the intrinsic gas of the encoded directive."""
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_staking(staking.collect_rewards(sender), 1)

        payload_bytes = rlp.encode([address.parse(sender)])
        zeros = payload_bytes.count(0)
        expected = 21000 + zeros * 4 + (len(payload_bytes) - zeros) * 68
        assert result.params["gas"] == expected

    @pytest.mark.asyncio
    async def test_malformed_directive(self, handler, local_signer, sender):
        """Test a directive with a bad BLS key fails as an encoding failure."""
        builder = staking.edit_validator(sender, staking.Description(name="v"), slot_key_to_add="0x1234")
        controller = make_controller(handler, local_signer, sender)

        result = await controller.execute_staking(builder, 1)

        assert isinstance(result.error, EncodingFailureError)
        assert result.error.step == "directive"
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_staking_dry_run(self, handler, local_signer, sender):
        """Test a staking dry run renders the directive."""
        validator = address_of(OTHER_KEY)
        controller = make_controller(handler, local_signer, sender, dry_run=True)

        result = await controller.execute_staking(staking.undelegate(sender, validator, "5"), 1)

        data = json.loads(controller.transaction_to_json())
        assert result.status == TransactionStatus.DRY_RUN
        assert data["type"] == "UNDELEGATE"
        assert data["msg"]["validator-address"] == validator
        assert data["msg"]["amount"] == 5 * ONE
        assert handler.count(RPCMethod.SEND_RAW_STAKING_TRANSACTION) == 0
