"""Base interfaces for transaction signing.

Signing flow:
1. Controller assembles the unsigned transaction
2. Backend signs it for a chain id (in process or on a device)
3. Backend returns the serialized signed transaction and the signer address
4. Controller hex-encodes the bytes for broadcast
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from shardwallet.transaction.builder import (
    StakingTransaction,
    Transaction,
    TransferTransaction,
)

logger = logging.getLogger(__name__)


class SignerType(str, Enum):
    """Type of signing backend."""
    LOCAL_KEYSTORE = "local"  # Decrypted keystore key, signs in process
    HARDWARE = "hardware"     # External device, key never leaves it


@dataclass
class SignedTransaction:
    """Result of a signing operation.

    Attributes:
        transaction: The signed transaction (v, r, s populated)
        raw: RLP serialization of the signed transaction
        signer_address: Address the backend signed with (bech32)
    """
    transaction: Transaction
    raw: bytes
    signer_address: str

    @property
    def raw_hex(self) -> str:
        return "0x" + self.raw.hex()


class SignerBackend(ABC):
    """Abstract base class for signing backends.

    Implementations never expose raw private keys.
    """

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @abstractmethod
    async def sign_transfer(self, tx: TransferTransaction, chain_id: int) -> SignedTransaction:
        """Sign a value-transfer transaction.

        Raises:
            SigningError: If signing fails
        """
        pass

    @abstractmethod
    async def sign_staking(self, tx: StakingTransaction, chain_id: int) -> SignedTransaction:
        """Sign a staking transaction.

        Raises:
            SigningError: If signing fails
        """
        pass

    @abstractmethod
    async def get_address(self) -> str:
        """Address of the signing key (bech32)."""
        pass

    async def sign(self, tx: Transaction, chain_id: int) -> SignedTransaction:
        """Sign either transaction family."""
        if isinstance(tx, StakingTransaction):
            return await self.sign_staking(tx, chain_id)
        if isinstance(tx, TransferTransaction):
            return await self.sign_transfer(tx, chain_id)
        raise SigningError(f"Unsupported transaction type: {type(tx).__name__}")

    async def health_check(self) -> bool:
        """Check if the backend is ready to sign."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value})"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass


class KeyNotFoundError(SigningError):
    """Exception raised when signing key is not found."""
    pass


class KeystoreLockedError(SigningError):
    """Exception raised when a keystore cannot be decrypted."""
    pass


class SigningTimeoutError(SigningError):
    """Exception raised when signing operation times out."""
    pass
