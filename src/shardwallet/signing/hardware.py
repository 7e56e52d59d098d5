"""Hardware device signing backend.

The device receives the unsigned signing preimage, asks the user to
confirm on screen and answers with a signature and the address of the
key that produced it. The private key never leaves the device.

Device calls block (possibly on user interaction), so they run in the
default executor. A timeout can be given; without one the wait is
unbounded.
"""

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

from shardwallet.signing.base import (
    SignedTransaction,
    SignerBackend,
    SignerType,
    SigningError,
    SigningTimeoutError,
)
from shardwallet.transaction.builder import StakingTransaction, TransferTransaction
from shardwallet.transaction.errors import EncodingFailureError

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65


@runtime_checkable
class HardwareDevice(Protocol):
    """Query/response interface of a signing device.

    Signatures are 65 bytes: r (32) || s (32) || recovery id (1).
    """

    def get_address(self) -> str:
        """Address of the device key (bech32)."""
        ...

    def sign_transaction(self, preimage: bytes, chain_id: int) -> tuple[bytes, str]:
        """Sign a transfer preimage; returns (signature, signer address)."""
        ...

    def sign_staking_transaction(self, preimage: bytes, chain_id: int) -> tuple[bytes, str]:
        """Sign a staking preimage; returns (signature, signer address)."""
        ...


def split_signature(signature: bytes) -> tuple[int, int, int]:
    """Split r || s || v into (recovery_id, r, s)."""
    if len(signature) != SIGNATURE_LENGTH:
        raise SigningError(
            f"Device returned {len(signature)} byte signature, expected {SIGNATURE_LENGTH}"
        )
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    return signature[64], r, s


class HardwareSigner(SignerBackend):
    """Signs by delegating to an external device.

    The returned signer address is the one claimed by the device; callers
    must compare it with the expected sender.
    """

    def __init__(self, device: HardwareDevice, timeout: Optional[float] = None):
        """Initialize hardware signer.

        Args:
            device: Connected device
            timeout: Seconds to wait for the device (None = no limit)
        """
        super().__init__(SignerType.HARDWARE)
        self.device = device
        self.timeout = timeout

    async def _call_device(self, func, *args):
        loop = asyncio.get_running_loop()
        call = loop.run_in_executor(None, func, *args)
        try:
            if self.timeout is None:
                return await call
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SigningTimeoutError(
                f"Hardware device did not answer within {self.timeout}s"
            ) from e

    async def _sign(self, tx, chain_id: int, device_call) -> SignedTransaction:
        preimage = tx.signing_preimage(chain_id)

        try:
            signature, signer_address = await self._call_device(device_call, preimage, chain_id)
        except SigningError:
            raise
        except Exception as e:
            logger.error(f"Hardware signing failed: {e}")
            raise SigningError(f"Hardware signing failed: {e}") from e

        recovery_id, r, s = split_signature(signature)
        try:
            signed = tx.with_signature(recovery_id, r, s, chain_id)
        except EncodingFailureError as e:
            raise SigningError(f"Device returned an unusable signature: {e}") from e

        return SignedTransaction(
            transaction=signed,
            raw=signed.encode(),
            signer_address=signer_address,
        )

    async def sign_transfer(self, tx: TransferTransaction, chain_id: int) -> SignedTransaction:
        return await self._sign(tx, chain_id, self.device.sign_transaction)

    async def sign_staking(self, tx: StakingTransaction, chain_id: int) -> SignedTransaction:
        return await self._sign(tx, chain_id, self.device.sign_staking_transaction)

    async def get_address(self) -> str:
        return await self._call_device(self.device.get_address)

    async def health_check(self) -> bool:
        """Check if the device answers."""
        try:
            await self.get_address()
            return True
        except Exception as e:
            logger.warning(f"Hardware device health check failed: {e}")
            return False
