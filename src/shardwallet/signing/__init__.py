"""Transaction signing backends.

- LocalKeystoreSigner: decrypted keystore key, signs in process
- HardwareSigner: delegates to an external signing device
"""

from shardwallet.signing.base import (
    KeyNotFoundError,
    KeystoreLockedError,
    SignedTransaction,
    SignerBackend,
    SignerType,
    SigningError,
    SigningTimeoutError,
)
from shardwallet.signing.factory import get_signer
from shardwallet.signing.hardware import HardwareDevice, HardwareSigner
from shardwallet.signing.keystore import Keystore, LocalKeystoreSigner, UnlockedKey

__all__ = [
    "HardwareDevice",
    "HardwareSigner",
    "KeyNotFoundError",
    "Keystore",
    "KeystoreLockedError",
    "LocalKeystoreSigner",
    "SignedTransaction",
    "SignerBackend",
    "SignerType",
    "SigningError",
    "SigningTimeoutError",
    "UnlockedKey",
    "get_signer",
]
