"""Local keystore signing backend.

Keys live in encrypted keystore (Web3 Secret Storage) JSON files. A key
must be unlocked with its passphrase before a signer can be built from
it; signing is then CPU-bound secp256k1 with no I/O.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from eth_account import Account
from eth_keys import keys

from shardwallet import address
from shardwallet.signing.base import (
    KeyNotFoundError,
    KeystoreLockedError,
    SignedTransaction,
    SignerBackend,
    SignerType,
    SigningError,
)
from shardwallet.transaction.builder import StakingTransaction, TransferTransaction
from shardwallet.transaction.errors import EncodingFailureError

logger = logging.getLogger(__name__)


@dataclass
class UnlockedKey:
    """A decrypted account key."""
    address: bytes
    private_key: bytes = field(repr=False)


class Keystore:
    """Directory of encrypted keystore files.

    Files may be nested one level per account name, as in
    ``account-keys/<name>/UTC--...``.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory).expanduser()

    def _key_files(self):
        if not self.directory.is_dir():
            return
        for path in sorted(self.directory.rglob("*")):
            if path.is_file():
                yield path

    def find(self, account: str) -> dict:
        """Find the keystore JSON for an account.

        Args:
            account: Account address (bech32 or hex)

        Returns:
            Parsed keystore JSON

        Raises:
            KeyNotFoundError: If no keystore file matches
        """
        wanted = address.parse(account).hex()

        for path in self._key_files():
            try:
                data = json.loads(path.read_text())
            except (OSError, UnicodeDecodeError, ValueError):
                logger.debug(f"Skipping non-keystore file {path}")
                continue

            if isinstance(data, dict) and str(data.get("address", "")).lower().removeprefix("0x") == wanted:
                logger.debug(f"Found keystore for {account} at {path}")
                return data

        raise KeyNotFoundError(f"No keystore found for {account} in {self.directory}")

    def accounts(self) -> list[str]:
        """List bech32 addresses of all keystore files."""
        found = []
        for path in self._key_files():
            try:
                data = json.loads(path.read_text())
                found.append(address.to_bech32(bytes.fromhex(data["address"].removeprefix("0x"))))
            except (OSError, UnicodeDecodeError, ValueError, KeyError, TypeError):
                continue
        return found

    def unlock(self, account: str, passphrase: str) -> UnlockedKey:
        """Decrypt the key of an account.

        Raises:
            KeyNotFoundError: If no keystore file matches
            KeystoreLockedError: If the passphrase is wrong
        """
        return unlock_keyfile(self.find(account), passphrase)


def unlock_keyfile(keyfile: dict, passphrase: str) -> UnlockedKey:
    """Decrypt a parsed keystore JSON with its passphrase."""
    try:
        private_key = bytes(Account.decrypt(keyfile, passphrase))
    except ValueError as e:
        raise KeystoreLockedError(f"Could not unlock keystore: {e}") from e

    pk = keys.PrivateKey(private_key)
    return UnlockedKey(address=pk.public_key.to_canonical_address(), private_key=private_key)


class LocalKeystoreSigner(SignerBackend):
    """Signs in process with an unlocked keystore key."""

    def __init__(self, key: UnlockedKey):
        super().__init__(SignerType.LOCAL_KEYSTORE)
        self._key = keys.PrivateKey(key.private_key)
        self._address = key.address

    @classmethod
    def from_private_key(cls, private_key_hex: str) -> "LocalKeystoreSigner":
        """Build a signer from a raw hex key (for testing)."""
        private_key = bytes.fromhex(private_key_hex.removeprefix("0x"))
        pk = keys.PrivateKey(private_key)
        return cls(UnlockedKey(address=pk.public_key.to_canonical_address(), private_key=private_key))

    def _sign(self, tx, chain_id: int) -> SignedTransaction:
        try:
            signature = self._key.sign_msg_hash(tx.signing_hash(chain_id))
            signed = tx.with_signature(signature.v, signature.r, signature.s, chain_id)
            raw = signed.encode()
        except EncodingFailureError:
            raise
        except Exception as e:
            logger.error(f"Local signing failed: {e}")
            raise SigningError(f"Local signing failed: {e}") from e

        return SignedTransaction(
            transaction=signed,
            raw=raw,
            signer_address=address.to_bech32(self._address),
        )

    async def sign_transfer(self, tx: TransferTransaction, chain_id: int) -> SignedTransaction:
        return self._sign(tx, chain_id)

    async def sign_staking(self, tx: StakingTransaction, chain_id: int) -> SignedTransaction:
        return self._sign(tx, chain_id)

    async def get_address(self) -> str:
        return address.to_bech32(self._address)

    async def health_check(self) -> bool:
        return self._key is not None
