"""Chain identifiers.

Signatures commit to the chain id (EIP-155 style replay protection), so a
transaction signed for one network is rejected by the others.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ChainID:
    """Named chain identifier."""

    name: str
    value: int

    def __str__(self) -> str:
        return self.name


# ======================
# Known networks
# ======================

CHAINS: dict[str, ChainID] = {
    "mainnet": ChainID(name="mainnet", value=1),
    "testnet": ChainID(name="testnet", value=2),
    "pangaea": ChainID(name="pangaea", value=3),
    "partner": ChainID(name="partner", value=4),
    "stressnet": ChainID(name="stressnet", value=5),
    "localnet": ChainID(name="localnet", value=2),
}


def get_chain(name_or_value: str) -> ChainID:
    """Resolve a chain by name or by its numeric id.

    Args:
        name_or_value: Chain name ("mainnet") or decimal id ("1")

    Returns:
        ChainID

    Raises:
        ValueError: If the chain is unknown
    """
    key = str(name_or_value).strip().lower()

    if key in CHAINS:
        return CHAINS[key]

    if key.isdigit():
        value = int(key)
        for chain in CHAINS.values():
            if chain.value == value:
                return chain
        return ChainID(name=key, value=value)

    raise ValueError(f"Unknown chain: {name_or_value} (known: {', '.join(CHAINS)})")
