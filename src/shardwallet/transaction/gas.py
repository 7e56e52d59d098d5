"""Intrinsic gas, following the chain's execution rules."""

TX_GAS = 21000
TX_GAS_CONTRACT_CREATION = 53000
TX_DATA_ZERO_GAS = 4
TX_DATA_NON_ZERO_GAS = 68


def intrinsic_gas(data: bytes, contract_creation: bool = False, homestead: bool = True) -> int:
    """Compute the gas charged before any execution.

    Args:
        data: Transaction payload bytes
        contract_creation: Whether the transaction creates a contract
        homestead: Homestead rules (creation costs more)

    Returns:
        Gas units
    """
    if contract_creation and homestead:
        gas = TX_GAS_CONTRACT_CREATION
    else:
        gas = TX_GAS

    if data:
        zeros = data.count(0)
        gas += zeros * TX_DATA_ZERO_GAS
        gas += (len(data) - zeros) * TX_DATA_NON_ZERO_GAS

    return gas
