"""Signer factory.

Creates the signing backend for the configured signer type.
"""

import logging
from typing import Optional

from shardwallet.config import Settings, get_settings
from shardwallet.signing.base import SignerBackend, SignerType
from shardwallet.signing.hardware import HardwareDevice, HardwareSigner
from shardwallet.signing.keystore import Keystore, LocalKeystoreSigner

logger = logging.getLogger(__name__)


def get_signer_type(settings: Optional[Settings] = None) -> SignerType:
    """Signer type from settings (SHARDWALLET_SIGNER_BACKEND)."""
    settings = settings or get_settings()
    return SignerType(settings.signer_backend)


def get_signer(
    account: str,
    signer_type: Optional[SignerType] = None,
    passphrase: str = "",
    device: Optional[HardwareDevice] = None,
    settings: Optional[Settings] = None,
) -> SignerBackend:
    """Create a signer for an account.

    Args:
        account: Sender address whose key signs
        signer_type: Backend to use (defaults to settings)
        passphrase: Keystore passphrase (local backend)
        device: Connected device (hardware backend)
        settings: Settings (defaults to global)

    Returns:
        SignerBackend instance

    Raises:
        KeyNotFoundError: No keystore for the account
        KeystoreLockedError: Wrong passphrase
        ValueError: Hardware backend requested without a device
    """
    settings = settings or get_settings()
    signer_type = signer_type or get_signer_type(settings)
    logger.info(f"Initializing {signer_type.value} signer")

    if signer_type == SignerType.HARDWARE:
        if device is None:
            raise ValueError("Hardware signing requires a connected device")
        return HardwareSigner(device, timeout=settings.hardware_timeout)

    keystore = Keystore(settings.keystore_dir)
    return LocalKeystoreSigner(keystore.unlock(account, passphrase))
