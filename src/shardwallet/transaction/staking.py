"""Staking directive payloads.

Each directive is a typed payload carried by a staking transaction:

    CreateValidator  register a validator with its keys and initial stake
    EditValidator    change description, commission or slot keys
    Delegate         stake tokens with a validator
    Undelegate       withdraw stake from a validator
    CollectRewards   claim accumulated rewards

Directive builders are zero-argument callables returning a payload; the
controller invokes them when it assembles the transaction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Callable, ClassVar, Optional

from shardwallet import address
from shardwallet.units import Amount, to_base_units, to_decimal

BLS_PUBLIC_KEY_SIZE = 48
DEC_PRECISION = 10**18


class Directive(IntEnum):
    """Staking directive type, as encoded on chain."""

    CREATE_VALIDATOR = 0
    EDIT_VALIDATOR = 1
    DELEGATE = 2
    UNDELEGATE = 3
    COLLECT_REWARDS = 4


def encode_dec(value: Decimal) -> int:
    """Encode a fixed-point rate (0.1 -> 10^17)."""
    return int(to_decimal(value) * DEC_PRECISION)


def parse_bls_public_key(text: str) -> bytes:
    """Decode a hex BLS public key.

    Raises:
        ValueError: If the key is not 48 bytes of hex
    """
    key = bytes.fromhex(text[2:] if text.startswith("0x") else text)
    if len(key) != BLS_PUBLIC_KEY_SIZE:
        raise ValueError(
            f"BLS public key must be {BLS_PUBLIC_KEY_SIZE} bytes, got {len(key)}"
        )
    return key


@dataclass(frozen=True)
class Description:
    """Validator description."""

    name: str = ""
    identity: str = ""
    website: str = ""
    security_contact: str = ""
    details: str = ""

    def rlp_fields(self) -> list:
        return [
            self.name.encode(),
            self.identity.encode(),
            self.website.encode(),
            self.security_contact.encode(),
            self.details.encode(),
        ]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "identity": self.identity,
            "website": self.website,
            "security-contact": self.security_contact,
            "details": self.details,
        }


@dataclass(frozen=True)
class CommissionRates:
    """Validator commission rates as fractions of one."""

    rate: Decimal
    max_rate: Decimal
    max_change_rate: Decimal

    def rlp_fields(self) -> list:
        return [
            encode_dec(self.rate),
            encode_dec(self.max_rate),
            encode_dec(self.max_change_rate),
        ]

    def to_dict(self) -> dict:
        return {
            "rate": str(self.rate),
            "max-rate": str(self.max_rate),
            "max-change-rate": str(self.max_change_rate),
        }


class StakingPayload(ABC):
    """Base class for directive payloads."""

    directive: ClassVar[Directive]

    @abstractmethod
    def rlp_fields(self) -> list:
        """Payload as a nested list of RLP-encodable items."""
        pass

    @abstractmethod
    def to_dict(self) -> dict:
        """JSON-friendly view of the payload."""
        pass

    @property
    def staked_amount(self) -> int:
        """Base units leaving the sender's balance (0 if none)."""
        return 0


@dataclass(frozen=True)
class CreateValidator(StakingPayload):
    directive: ClassVar[Directive] = Directive.CREATE_VALIDATOR

    validator_address: bytes
    description: Description
    commission_rates: CommissionRates
    min_self_delegation: int
    max_total_delegation: int
    slot_pub_keys: tuple[bytes, ...]
    amount: int

    def rlp_fields(self) -> list:
        return [
            self.validator_address,
            self.description.rlp_fields(),
            self.commission_rates.rlp_fields(),
            self.min_self_delegation,
            self.max_total_delegation,
            list(self.slot_pub_keys),
            self.amount,
        ]

    def to_dict(self) -> dict:
        return {
            "validator-address": address.to_bech32(self.validator_address),
            "description": self.description.to_dict(),
            "commission": self.commission_rates.to_dict(),
            "min-self-delegation": self.min_self_delegation,
            "max-total-delegation": self.max_total_delegation,
            "slot-pub-keys": ["0x" + k.hex() for k in self.slot_pub_keys],
            "amount": self.amount,
        }

    @property
    def staked_amount(self) -> int:
        return self.amount


@dataclass(frozen=True)
class EditValidator(StakingPayload):
    directive: ClassVar[Directive] = Directive.EDIT_VALIDATOR

    validator_address: bytes
    description: Description
    commission_rate: Optional[Decimal] = None
    min_self_delegation: int = 0
    max_total_delegation: int = 0
    slot_key_to_remove: Optional[bytes] = None
    slot_key_to_add: Optional[bytes] = None

    def rlp_fields(self) -> list:
        # Unset optional fields encode as empty strings
        return [
            self.validator_address,
            self.description.rlp_fields(),
            encode_dec(self.commission_rate) if self.commission_rate is not None else b"",
            self.min_self_delegation,
            self.max_total_delegation,
            self.slot_key_to_remove or b"",
            self.slot_key_to_add or b"",
        ]

    def to_dict(self) -> dict:
        return {
            "validator-address": address.to_bech32(self.validator_address),
            "description": self.description.to_dict(),
            "commission-rate": str(self.commission_rate) if self.commission_rate is not None else None,
            "min-self-delegation": self.min_self_delegation,
            "max-total-delegation": self.max_total_delegation,
            "slot-key-to-remove": "0x" + self.slot_key_to_remove.hex() if self.slot_key_to_remove else None,
            "slot-key-to-add": "0x" + self.slot_key_to_add.hex() if self.slot_key_to_add else None,
        }


@dataclass(frozen=True)
class Delegate(StakingPayload):
    directive: ClassVar[Directive] = Directive.DELEGATE

    delegator_address: bytes
    validator_address: bytes
    amount: int

    def rlp_fields(self) -> list:
        return [self.delegator_address, self.validator_address, self.amount]

    def to_dict(self) -> dict:
        return {
            "delegator-address": address.to_bech32(self.delegator_address),
            "validator-address": address.to_bech32(self.validator_address),
            "amount": self.amount,
        }

    @property
    def staked_amount(self) -> int:
        return self.amount


@dataclass(frozen=True)
class Undelegate(StakingPayload):
    directive: ClassVar[Directive] = Directive.UNDELEGATE

    delegator_address: bytes
    validator_address: bytes
    amount: int

    def rlp_fields(self) -> list:
        return [self.delegator_address, self.validator_address, self.amount]

    def to_dict(self) -> dict:
        return {
            "delegator-address": address.to_bech32(self.delegator_address),
            "validator-address": address.to_bech32(self.validator_address),
            "amount": self.amount,
        }


@dataclass(frozen=True)
class CollectRewards(StakingPayload):
    directive: ClassVar[Directive] = Directive.COLLECT_REWARDS

    delegator_address: bytes

    def rlp_fields(self) -> list:
        return [self.delegator_address]

    def to_dict(self) -> dict:
        return {"delegator-address": address.to_bech32(self.delegator_address)}


DirectiveBuilder = Callable[[], StakingPayload]


# ======================
# Directive builders
# ======================


def create_validator(
    validator_address: str,
    description: Description,
    commission_rates: CommissionRates,
    min_self_delegation: Amount,
    max_total_delegation: Amount,
    bls_public_keys: list[str],
    amount: Amount,
) -> DirectiveBuilder:
    """Builder for a create-validator directive from user-facing values."""

    def build() -> StakingPayload:
        return CreateValidator(
            validator_address=address.parse(validator_address),
            description=description,
            commission_rates=commission_rates,
            min_self_delegation=to_base_units(min_self_delegation),
            max_total_delegation=to_base_units(max_total_delegation),
            slot_pub_keys=tuple(parse_bls_public_key(k) for k in bls_public_keys),
            amount=to_base_units(amount),
        )

    return build


def edit_validator(
    validator_address: str,
    description: Description,
    commission_rate: Optional[Amount] = None,
    min_self_delegation: Amount = 0,
    max_total_delegation: Amount = 0,
    slot_key_to_remove: Optional[str] = None,
    slot_key_to_add: Optional[str] = None,
) -> DirectiveBuilder:
    """Builder for an edit-validator directive."""

    def build() -> StakingPayload:
        return EditValidator(
            validator_address=address.parse(validator_address),
            description=description,
            commission_rate=to_decimal(commission_rate) if commission_rate is not None else None,
            min_self_delegation=to_base_units(min_self_delegation),
            max_total_delegation=to_base_units(max_total_delegation),
            slot_key_to_remove=parse_bls_public_key(slot_key_to_remove) if slot_key_to_remove else None,
            slot_key_to_add=parse_bls_public_key(slot_key_to_add) if slot_key_to_add else None,
        )

    return build


def delegate(delegator_address: str, validator_address: str, amount: Amount) -> DirectiveBuilder:
    """Builder for a delegate directive."""

    def build() -> StakingPayload:
        return Delegate(
            delegator_address=address.parse(delegator_address),
            validator_address=address.parse(validator_address),
            amount=to_base_units(amount),
        )

    return build


def undelegate(delegator_address: str, validator_address: str, amount: Amount) -> DirectiveBuilder:
    """Builder for an undelegate directive."""

    def build() -> StakingPayload:
        return Undelegate(
            delegator_address=address.parse(delegator_address),
            validator_address=address.parse(validator_address),
            amount=to_base_units(amount),
        )

    return build


def collect_rewards(delegator_address: str) -> DirectiveBuilder:
    """Builder for a collect-rewards directive."""

    def build() -> StakingPayload:
        return CollectRewards(delegator_address=address.parse(delegator_address))

    return build
