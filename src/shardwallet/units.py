"""Denominations and conversions from user amounts to base units.

One token is 10^18 base units. User amounts are first truncated to nano
precision (10^-9) and then scaled by 10^9 a second time; the double scaling
yields 10^18 overall but silently drops anything below one nano-token.
"""

from decimal import ROUND_DOWN, Decimal
from typing import Union

NANO = 10**9
ONE = 10**18

Amount = Union[Decimal, int, float, str]


def to_decimal(value: Amount) -> Decimal:
    """Convert a user-facing amount to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_base_units(amount: Amount) -> int:
    """Convert a token amount to on-chain base units.

    Args:
        amount: Decimal token quantity (e.g. "1.5")

    Returns:
        Integer base units (1.5 -> 1_500_000_000_000_000_000)
    """
    nano = int(to_decimal(amount) * NANO)
    return nano * NANO


def gas_price_to_base_units(gas_price: Amount) -> int:
    """Convert a gas price given in nano-tokens to base units.

    Fractional gas prices are truncated to whole nano-tokens.
    """
    whole = int(to_decimal(gas_price).to_integral_value(rounding=ROUND_DOWN))
    return whole * NANO


def from_base_units(value: int) -> Decimal:
    """Convert base units back to a token amount."""
    return Decimal(value) / Decimal(ONE)


def parse_hex_quantity(value: str) -> int:
    """Parse a ``0x`` prefixed hex quantity as returned by the node.

    Raises:
        ValueError: If value is not a hex quantity
    """
    if not isinstance(value, str) or not value.startswith(("0x", "0X")):
        raise ValueError(f"Expected hex quantity, got {value!r}")
    digits = value[2:]
    return int(digits, 16) if digits else 0
