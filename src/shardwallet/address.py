"""Account address parsing and formatting.

Addresses are 20 bytes. Two text forms are accepted:
- bech32 with the ``one`` prefix (``one1...``), used by the node for balances
- ``0x`` hex, used for transaction counts and internally
"""

from bip_utils import Bech32Decoder, Bech32Encoder
from eth_utils import is_hex_address, to_bytes, to_checksum_address

BECH32_PREFIX = "one"
ADDRESS_LENGTH = 20


class AddressError(ValueError):
    """Raised when address text cannot be parsed."""
    pass


def parse(text: str) -> bytes:
    """Parse an address from its bech32 or hex text form.

    Args:
        text: ``one1...`` or ``0x...`` address

    Returns:
        20 address bytes

    Raises:
        AddressError: If the text is not a valid address
    """
    if not text:
        raise AddressError("Empty address")

    text = text.strip()

    if text.lower().startswith(BECH32_PREFIX + "1"):
        try:
            data = Bech32Decoder.Decode(BECH32_PREFIX, text.lower())
        except Exception as e:
            raise AddressError(f"Invalid bech32 address {text}: {e}") from e
    elif is_hex_address(text):
        data = to_bytes(hexstr=text)
    else:
        raise AddressError(f"Invalid address: {text}")

    if len(data) != ADDRESS_LENGTH:
        raise AddressError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(data)}")

    return bytes(data)


def to_bech32(address: bytes) -> str:
    """Format address bytes as ``one1...``."""
    return Bech32Encoder.Encode(BECH32_PREFIX, bytes(address))


def to_hex(address: bytes) -> str:
    """Format address bytes as a checksummed ``0x`` string."""
    return to_checksum_address(bytes(address))


def same_address(a: str, b: str) -> bool:
    """Compare two address texts regardless of their form."""
    try:
        return parse(a) == parse(b)
    except AddressError:
        return False
