"""Transaction controller.

Drives one transaction through an ordered pipeline:

    shard ids -> gas -> amount -> balance check -> receiver -> gas price
    -> nonce -> assemble -> sign -> broadcast -> confirm

Each step either completes or raises a TransactionError. The first error
becomes the controller's terminal failure and the remaining steps are
skipped. A controller runs exactly one pipeline.
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from shardwallet import address
from shardwallet.chains import ChainID
from shardwallet.config import Settings
from shardwallet.rpc.base import NetworkHandler, RPCError, RPCMethod
from shardwallet.rpc.factory import BEACON_SHARD
from shardwallet.signing.base import SignerBackend, SignerType, SigningError
from shardwallet.transaction.builder import (
    StakingTransaction,
    Transaction,
    encode_payload,
    new_staking_transaction,
    new_transfer_transaction,
)
from shardwallet.transaction.errors import (
    BroadcastFailedError,
    EncodingFailureError,
    InsufficientFundsError,
    RPCFailureError,
    SigningFailedError,
    TransactionError,
    VerificationMismatchError,
)
from shardwallet.transaction.gas import intrinsic_gas
from shardwallet.transaction.staking import DirectiveBuilder, StakingPayload
from shardwallet.units import (
    Amount,
    from_base_units,
    gas_price_to_base_units,
    parse_hex_quantity,
    to_base_units,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2


class TransactionStatus(str, Enum):
    """Outcome of a pipeline run."""
    DRY_RUN = "dry_run"       # Built and signed, not sent
    SUBMITTED = "submitted"   # Broadcast, confirmation not requested
    CONFIRMED = "confirmed"   # Receipt observed within the wait window
    PENDING = "pending"       # Broadcast, no receipt within the wait window
    FAILED = "failed"


@dataclass(frozen=True)
class ControllerBehavior:
    """Controller options, fixed at construction.

    Attributes:
        dry_run: Build and sign, never broadcast or confirm
        signing_impl: Which kind of signer backend is expected
        confirmation_wait: Seconds to poll for a receipt (0 = do not poll)
        permissive_nonce: Use nonce 0 if the nonce lookup fails
        poll_interval: Seconds between receipt queries
    """
    dry_run: bool = False
    signing_impl: SignerType = SignerType.LOCAL_KEYSTORE
    confirmation_wait: int = 0
    permissive_nonce: bool = False
    poll_interval: int = DEFAULT_POLL_INTERVAL

    def __post_init__(self):
        if self.confirmation_wait < 0:
            raise ValueError("confirmation_wait must not be negative")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "ControllerBehavior":
        """Behavior from settings, with explicit overrides taking priority."""
        values = {
            "dry_run": settings.dry_run,
            "signing_impl": SignerType(settings.signer_backend),
            "confirmation_wait": settings.confirmation_wait,
            "permissive_nonce": settings.permissive_nonce,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class PendingTransaction:
    """State accumulated by the pipeline.

    Params are write-once; each artifact can only be set after the one
    it is derived from.
    """

    def __init__(self):
        self.params: dict[str, Any] = {}
        self.built_payload: Optional[Transaction] = None
        self.signature_hex: Optional[str] = None
        self.receipt_hash: Optional[str] = None
        self.receipt: Optional[dict] = None

    def set_param(self, name: str, value: Any) -> None:
        if name in self.params:
            raise RuntimeError(f"Transaction parameter {name!r} is already set")
        self.params[name] = value

    def param(self, name: str) -> Any:
        try:
            return self.params[name]
        except KeyError:
            raise RuntimeError(f"Transaction parameter {name!r} has not been resolved") from None

    def set_built_payload(self, tx: Transaction) -> None:
        if self.built_payload is not None:
            raise RuntimeError("Transaction payload is already built")
        self.built_payload = tx

    def set_signed(self, tx: Transaction, signature_hex: str) -> None:
        if self.built_payload is None:
            raise RuntimeError("Cannot sign before the payload is built")
        if self.signature_hex is not None:
            raise RuntimeError("Transaction is already signed")
        self.built_payload = tx
        self.signature_hex = signature_hex

    def set_receipt_hash(self, receipt_hash: str) -> None:
        if self.signature_hex is None:
            raise RuntimeError("Cannot record a receipt hash before signing")
        self.receipt_hash = receipt_hash

    def set_receipt(self, receipt: dict) -> None:
        if self.receipt_hash is None:
            raise RuntimeError("Cannot record a receipt before broadcast")
        self.receipt = receipt


@dataclass
class TransactionResult:
    """What a pipeline run produced."""
    status: TransactionStatus
    error: Optional[TransactionError] = None
    receipt_hash: Optional[str] = None
    receipt: Optional[dict] = None
    signature_hex: Optional[str] = None
    transaction: Optional[Transaction] = None
    params: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def nonce(self) -> Optional[int]:
        return self.params.get("nonce")


Step = tuple[str, Callable[[], Awaitable[None]]]


class Controller:
    """Builds, signs, broadcasts and confirms one transaction.

    Example:
        controller = Controller(handler, signer, CHAINS["testnet"], "one1...")
        result = await controller.execute_transfer("one1...", "", Decimal("1.5"), 1, 0, 0)
        if result.error:
            ...
        print(result.receipt_hash)
    """

    def __init__(
        self,
        handler: NetworkHandler,
        signer: SignerBackend,
        chain_id: Union[ChainID, int],
        sender: str,
        behavior: Optional[ControllerBehavior] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize controller.

        Args:
            handler: Network handler bound to the sender's shard
            signer: Signing backend holding the sender's key
            chain_id: Chain the signature commits to
            sender: Sender address (bech32 or hex)
            behavior: Controller options
            sleep: Awaitable sleep used between receipt queries

        Raises:
            ValueError: If the signer does not match behavior.signing_impl
        """
        self.behavior = behavior or ControllerBehavior()
        if signer.signer_type != self.behavior.signing_impl:
            raise ValueError(
                f"Signer {signer!r} does not match signing implementation "
                f"{self.behavior.signing_impl.value}"
            )

        self.messenger = handler
        self.signer = signer
        self.chain_id = chain_id.value if isinstance(chain_id, ChainID) else int(chain_id)
        self.sender_address = address.parse(sender)
        self.failure: Optional[TransactionError] = None
        self.pending = PendingTransaction()
        self._sleep = sleep
        self._used = False

    @property
    def sender_bech32(self) -> str:
        return address.to_bech32(self.sender_address)

    @property
    def receipt_hash(self) -> Optional[str]:
        return self.pending.receipt_hash

    @property
    def receipt(self) -> Optional[dict]:
        return self.pending.receipt

    def transaction_to_json(self, pretty: bool = True) -> str:
        """Built transaction as JSON (signed fields included once signed)."""
        if self.pending.built_payload is None:
            raise RuntimeError("No transaction has been built")
        return self.pending.built_payload.to_json(pretty=pretty)

    # ======================
    # Public operations
    # ======================

    async def execute_transfer(
        self,
        to: str,
        input_data: str,
        amount: Amount,
        gas_price: Amount,
        from_shard: int,
        to_shard: int,
    ) -> TransactionResult:
        """Send a value transfer.

        Args:
            to: Receiver address (bech32 or hex)
            input_data: Base64 payload data ("" for none)
            amount: Token amount
            gas_price: Gas price in nano-tokens
            from_shard: Source shard id
            to_shard: Destination shard id

        Returns:
            TransactionResult; ``error`` holds the terminal failure
        """
        # Order matters: every value is resolved before assembly
        return await self._run([
            ("shard-ids", lambda: self._set_shard_ids(from_shard, to_shard)),
            ("intrinsic-gas", lambda: self._set_intrinsic_gas(input_data)),
            ("amount", lambda: self._set_amount(amount)),
            ("balance", lambda: self._verify_balance(self.pending.param("transfer-amount"))),
            ("receiver", lambda: self._set_receiver(to)),
            ("gas-price", lambda: self._set_gas_price(gas_price)),
            ("nonce", self._set_next_nonce),
            ("assemble", self._build_transfer),
            ("sign", self._sign),
            ("broadcast", self._broadcast),
            ("confirm", self._confirm),
        ])

    async def execute_staking(
        self,
        directive_builder: DirectiveBuilder,
        gas_price: Amount,
    ) -> TransactionResult:
        """Send a staking directive.

        Args:
            directive_builder: Callable producing the directive payload
            gas_price: Gas price in nano-tokens

        Returns:
            TransactionResult; ``error`` holds the terminal failure
        """
        return await self._run([
            ("shard-ids", lambda: self._set_shard_ids(BEACON_SHARD, BEACON_SHARD)),
            ("directive", lambda: self._set_directive(directive_builder)),
            ("intrinsic-gas", self._set_directive_gas),
            ("balance", self._verify_stake),
            ("gas-price", lambda: self._set_gas_price(gas_price)),
            ("nonce", self._set_next_nonce),
            ("assemble", self._build_staking),
            ("sign", self._sign),
            ("broadcast", self._broadcast),
            ("confirm", self._confirm),
        ])

    async def _run(self, steps: list[Step]) -> TransactionResult:
        if self._used:
            raise RuntimeError("Controller already executed; create a new one per transaction")
        self._used = True

        for name, step in steps:
            if self.failure is not None:
                logger.debug(f"Skipping {name}: pipeline already failed")
                continue
            try:
                logger.debug(f"Running step {name}")
                await step()
            except TransactionError as e:
                e.step = e.step or name
                self.failure = e
                logger.error(f"Transaction failed at {name}: {e}")

        return self._result()

    def _result(self) -> TransactionResult:
        if self.failure is not None:
            status = TransactionStatus.FAILED
        elif self.behavior.dry_run:
            status = TransactionStatus.DRY_RUN
        elif self.pending.receipt is not None:
            status = TransactionStatus.CONFIRMED
        elif self.behavior.confirmation_wait > 0:
            status = TransactionStatus.PENDING
        else:
            status = TransactionStatus.SUBMITTED

        return TransactionResult(
            status=status,
            error=self.failure,
            receipt_hash=self.pending.receipt_hash,
            receipt=self.pending.receipt,
            signature_hex=self.pending.signature_hex,
            transaction=self.pending.built_payload,
            params=dict(self.pending.params),
        )

    # ======================
    # Parameter resolution
    # ======================

    async def _set_shard_ids(self, from_shard: int, to_shard: int) -> None:
        if from_shard < 0 or to_shard < 0:
            raise EncodingFailureError(f"Invalid shard ids: {from_shard} -> {to_shard}")
        self.pending.set_param("from-shard", int(from_shard))
        self.pending.set_param("to-shard", int(to_shard))

    async def _set_intrinsic_gas(self, input_data: str) -> None:
        try:
            data = base64.b64decode(input_data or "", validate=True)
        except (binascii.Error, ValueError) as e:
            raise EncodingFailureError(f"Input data is not valid base64: {e}") from e

        self.pending.set_param("input-data", data)
        self.pending.set_param("gas", intrinsic_gas(data))

    async def _set_amount(self, amount: Amount) -> None:
        try:
            value = to_base_units(amount)
        except (ArithmeticError, ValueError) as e:
            raise EncodingFailureError(f"Invalid amount {amount!r}: {e}") from e
        if value < 0:
            raise EncodingFailureError(f"Amount must not be negative: {amount}")
        self.pending.set_param("transfer-amount", value)

    async def _verify_stake(self) -> None:
        staked = self.pending.param("directive").staked_amount
        if staked == 0:
            logger.debug("Directive stakes nothing, skipping balance check")
            return
        await self._verify_balance(staked)

    async def _verify_balance(self, required: int) -> None:
        reply = await self._call(RPCMethod.GET_BALANCE, [self.sender_bech32, "latest"])
        try:
            balance = parse_hex_quantity(reply.get("result"))
        except ValueError as e:
            raise RPCFailureError(f"Unexpected balance reply: {e}") from e

        if required > balance:
            raise InsufficientFundsError(
                f"current balance of {from_base_units(balance):.6f} is not enough for "
                f"the requested transfer {from_base_units(required):.6f}"
            )

    async def _set_receiver(self, receiver: str) -> None:
        try:
            self.pending.set_param("receiver", address.parse(receiver))
        except address.AddressError as e:
            raise EncodingFailureError(f"Invalid receiver: {e}") from e

    async def _set_gas_price(self, gas_price: Amount) -> None:
        try:
            value = gas_price_to_base_units(gas_price)
        except (ArithmeticError, ValueError) as e:
            raise EncodingFailureError(f"Invalid gas price {gas_price!r}: {e}") from e
        if value < 0:
            raise EncodingFailureError(f"Gas price must not be negative: {gas_price}")
        self.pending.set_param("gas-price", value)

    async def _set_next_nonce(self) -> None:
        try:
            reply = await self._call(
                RPCMethod.GET_TRANSACTION_COUNT,
                [address.to_hex(self.sender_address), "latest"],
            )
            nonce = parse_hex_quantity(reply.get("result"))
        except (RPCFailureError, ValueError) as e:
            if not self.behavior.permissive_nonce:
                if isinstance(e, RPCFailureError):
                    raise
                raise RPCFailureError(f"Unexpected nonce reply: {e}") from e
            logger.warning(f"Nonce lookup failed ({e}), falling back to nonce 0")
            nonce = 0

        logger.debug(f"Next nonce for {self.sender_bech32}: {nonce}")
        self.pending.set_param("nonce", nonce)

    async def _set_directive(self, directive_builder: DirectiveBuilder) -> None:
        try:
            payload = directive_builder()
        except (ValueError, ArithmeticError) as e:
            raise EncodingFailureError(f"Invalid staking directive: {e}") from e
        if not isinstance(payload, StakingPayload):
            raise EncodingFailureError(f"Directive builder returned {type(payload).__name__}")
        self.pending.set_param("directive", payload)

    async def _set_directive_gas(self) -> None:
        payload = self.pending.param("directive")
        try:
            encoded = encode_payload(payload)
        except (ArithmeticError, ValueError) as e:
            raise EncodingFailureError(f"Invalid staking directive: {e}") from e
        self.pending.set_param("gas", intrinsic_gas(encoded))

    # ======================
    # Assembly
    # ======================

    async def _build_transfer(self) -> None:
        p = self.pending
        tx = new_transfer_transaction(
            nonce=p.param("nonce"),
            gas_limit=p.param("gas"),
            to=p.param("receiver"),
            shard_id=p.param("from-shard"),
            to_shard_id=p.param("to-shard"),
            amount=p.param("transfer-amount"),
            gas_price=p.param("gas-price"),
            data=p.param("input-data"),
        )
        p.set_built_payload(tx)

    async def _build_staking(self) -> None:
        p = self.pending
        tx = new_staking_transaction(
            nonce=p.param("nonce"),
            gas_limit=p.param("gas"),
            gas_price=p.param("gas-price"),
            payload=p.param("directive"),
        )
        p.set_built_payload(tx)

    # ======================
    # Signing
    # ======================

    async def _sign(self) -> None:
        if self.behavior.signing_impl == SignerType.HARDWARE:
            await self._sign_with_device()
        else:
            await self._sign_locally()

    async def _sign_locally(self) -> None:
        try:
            signed = await self.signer.sign(self.pending.built_payload, self.chain_id)
        except SigningError as e:
            raise SigningFailedError(str(e)) from e

        if not address.same_address(signed.signer_address, self.sender_bech32):
            raise VerificationMismatchError(
                f"signature verification failed: sender address {self.sender_bech32} "
                f"doesn't match keystore address {signed.signer_address}"
            )

        self.pending.set_signed(signed.transaction, signed.raw_hex)
        logger.debug(f"Signed with chain id {self.chain_id}")

    async def _sign_with_device(self) -> None:
        try:
            signed = await self.signer.sign(self.pending.built_payload, self.chain_id)
        except SigningError as e:
            raise SigningFailedError(str(e)) from e

        if not address.same_address(signed.signer_address, self.sender_bech32):
            raise VerificationMismatchError(
                f"signature verification failed: sender address {self.sender_bech32} "
                f"doesn't match hardware device address {signed.signer_address}"
            )

        self.pending.set_signed(signed.transaction, signed.raw_hex)
        logger.debug(f"Signed on device with chain id {self.chain_id}")

    # ======================
    # Submission
    # ======================

    async def _broadcast(self) -> None:
        if self.behavior.dry_run:
            logger.info("Dry run, not sending transaction")
            return

        if isinstance(self.pending.built_payload, StakingTransaction):
            method = RPCMethod.SEND_RAW_STAKING_TRANSACTION
        else:
            method = RPCMethod.SEND_RAW_TRANSACTION

        try:
            reply = await self.messenger.send_rpc(method, [self.pending.signature_hex])
        except RPCError as e:
            raise BroadcastFailedError(f"Broadcast failed: {e}") from e

        receipt_hash = reply.get("result")
        if not isinstance(receipt_hash, str) or not receipt_hash:
            raise BroadcastFailedError(f"Node returned no transaction hash: {reply!r}")

        self.pending.set_receipt_hash(receipt_hash)
        logger.info(f"Transaction sent: {receipt_hash}")

    async def _confirm(self) -> None:
        wait = self.behavior.confirmation_wait
        if self.behavior.dry_run or wait <= 0 or self.pending.receipt_hash is None:
            return

        remaining = wait
        interval = self.behavior.poll_interval
        while remaining > 0:
            try:
                reply = await self.messenger.send_rpc(
                    RPCMethod.GET_TRANSACTION_RECEIPT, [self.pending.receipt_hash]
                )
            except RPCError as e:
                # Keep polling, the transaction is already broadcast
                logger.warning(f"Receipt query for {self.pending.receipt_hash} failed: {e}")
                reply = {}
            receipt = reply.get("result")
            if receipt:
                self.pending.set_receipt(receipt)
                logger.info(f"Transaction {self.pending.receipt_hash} confirmed")
                return
            await self._sleep(interval)
            remaining -= interval

        # Not an error: the transaction may still be included later
        logger.warning(
            f"Transaction {self.pending.receipt_hash} not confirmed within {wait}s"
        )

    async def _call(self, method: str, params: list) -> dict:
        try:
            return await self.messenger.send_rpc(method, params)
        except RPCError as e:
            raise RPCFailureError(f"{method} failed: {e}") from e
