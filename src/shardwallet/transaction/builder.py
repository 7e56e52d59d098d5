"""Transaction payloads and their RLP encoding.

Signing flow:
1. Assemble the unsigned payload from resolved fields
2. Compute the signing preimage: rlp(fields + [chain_id, 0, 0])
3. Sign keccak(preimage) with secp256k1
4. Attach v, r, s (v = recovery_id + chain_id * 2 + 35)
5. Serialize rlp(fields + [v, r, s]) for broadcast

Encoding is deterministic: identical fields give identical bytes.
"""

import json
import logging
from dataclasses import dataclass, replace
from typing import Optional, Union

from eth_utils import keccak
import rlp
from rlp.exceptions import EncodingError, SerializationError

from shardwallet import address
from shardwallet.transaction.errors import EncodingFailureError
from shardwallet.transaction.staking import Directive, StakingPayload

logger = logging.getLogger(__name__)


def _rlp_encode(items: list) -> bytes:
    try:
        return rlp.encode(items)
    except (EncodingError, SerializationError, TypeError) as e:
        raise EncodingFailureError(f"Failed to encode transaction: {e}") from e


class SignableTransaction:
    """Signing helpers shared by transfer and staking payloads.

    Subclasses are dataclasses with ``v``, ``r`` and ``s`` fields and
    implement ``rlp_fields``.
    """

    v: Optional[int]
    r: Optional[int]
    s: Optional[int]

    def rlp_fields(self) -> list:
        raise NotImplementedError

    @property
    def is_signed(self) -> bool:
        return self.v is not None and self.r is not None and self.s is not None

    def signing_preimage(self, chain_id: int) -> bytes:
        """RLP bytes a signer commits to (also what a hardware device receives)."""
        return _rlp_encode(self.rlp_fields() + [chain_id, 0, 0])

    def signing_hash(self, chain_id: int) -> bytes:
        return keccak(self.signing_preimage(chain_id))

    def encode_unsigned(self) -> bytes:
        return _rlp_encode(self.rlp_fields())

    def with_signature(self, recovery_id: int, r: int, s: int, chain_id: int):
        """Return a signed copy of this transaction."""
        if recovery_id >= 27:
            recovery_id -= 27
        if recovery_id not in (0, 1):
            raise EncodingFailureError(f"Invalid recovery id: {recovery_id}")
        return replace(self, v=recovery_id + chain_id * 2 + 35, r=r, s=s)

    def encode(self) -> bytes:
        """Serialize the signed transaction.

        Raises:
            EncodingFailureError: If the transaction is not signed
        """
        if not self.is_signed:
            raise EncodingFailureError("Cannot serialize an unsigned transaction")
        return _rlp_encode(self.rlp_fields() + [self.v, self.r, self.s])

    def hash(self) -> Optional[str]:
        """Transaction hash of the signed transaction."""
        if not self.is_signed:
            return None
        return "0x" + keccak(self.encode()).hex()

    def _signature_dict(self) -> dict:
        if not self.is_signed:
            return {}
        return {
            "v": hex(self.v),
            "r": hex(self.r),
            "s": hex(self.s),
            "hash": self.hash(),
        }

    def to_dict(self) -> dict:
        raise NotImplementedError

    def to_json(self, pretty: bool = True) -> str:
        if pretty:
            return json.dumps(self.to_dict(), indent=2)
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass(frozen=True)
class TransferTransaction(SignableTransaction):
    """Value transfer within or across shards."""

    nonce: int
    gas_price: int
    gas_limit: int
    shard_id: int
    to_shard_id: int
    to: Optional[bytes]
    amount: int
    data: bytes = b""
    v: Optional[int] = None
    r: Optional[int] = None
    s: Optional[int] = None

    def rlp_fields(self) -> list:
        return [
            self.nonce,
            self.gas_price,
            self.gas_limit,
            self.shard_id,
            self.to_shard_id,
            self.to or b"",
            self.amount,
            self.data,
        ]

    def to_dict(self) -> dict:
        result = {
            "nonce": hex(self.nonce),
            "gasPrice": hex(self.gas_price),
            "gas": hex(self.gas_limit),
            "shardID": self.shard_id,
            "toShardID": self.to_shard_id,
            "to": address.to_bech32(self.to) if self.to else None,
            "value": hex(self.amount),
            "input": "0x" + self.data.hex(),
        }
        result.update(self._signature_dict())
        return result


@dataclass(frozen=True)
class StakingTransaction(SignableTransaction):
    """Transaction carrying one staking directive."""

    directive: Directive
    payload: StakingPayload
    nonce: int
    gas_price: int
    gas_limit: int
    v: Optional[int] = None
    r: Optional[int] = None
    s: Optional[int] = None

    def __post_init__(self):
        if self.payload.directive != self.directive:
            raise EncodingFailureError(
                f"Payload {type(self.payload).__name__} does not match directive {self.directive.name}"
            )

    def rlp_fields(self) -> list:
        return [
            int(self.directive),
            self.payload.rlp_fields(),
            self.nonce,
            self.gas_price,
            self.gas_limit,
        ]

    def to_dict(self) -> dict:
        result = {
            "type": self.directive.name,
            "msg": self.payload.to_dict(),
            "nonce": hex(self.nonce),
            "gasPrice": hex(self.gas_price),
            "gas": hex(self.gas_limit),
        }
        result.update(self._signature_dict())
        return result


Transaction = Union[TransferTransaction, StakingTransaction]


def new_transfer_transaction(
    nonce: int,
    gas_limit: int,
    to: Optional[bytes],
    shard_id: int,
    to_shard_id: int,
    amount: int,
    gas_price: int,
    data: bytes = b"",
) -> TransferTransaction:
    """Assemble an unsigned transfer transaction."""
    return TransferTransaction(
        nonce=nonce,
        gas_price=gas_price,
        gas_limit=gas_limit,
        shard_id=shard_id,
        to_shard_id=to_shard_id,
        to=to,
        amount=amount,
        data=data,
    )


def new_staking_transaction(
    nonce: int,
    gas_limit: int,
    gas_price: int,
    payload: StakingPayload,
) -> StakingTransaction:
    """Assemble an unsigned staking transaction for a directive payload."""
    return StakingTransaction(
        directive=payload.directive,
        payload=payload,
        nonce=nonce,
        gas_price=gas_price,
        gas_limit=gas_limit,
    )


def encode_payload(payload: StakingPayload) -> bytes:
    """RLP bytes of a directive payload alone (used for gas estimation)."""
    return _rlp_encode(payload.rlp_fields())
