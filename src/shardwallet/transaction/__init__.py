"""Transaction building and submission.

The controller lives in ``shardwallet.transaction.controller`` and is
exported from the top-level package.
"""

from shardwallet.transaction.builder import (
    StakingTransaction,
    Transaction,
    TransferTransaction,
    encode_payload,
    new_staking_transaction,
    new_transfer_transaction,
)
from shardwallet.transaction.errors import (
    BroadcastFailedError,
    EncodingFailureError,
    InsufficientFundsError,
    RPCFailureError,
    SigningFailedError,
    TransactionError,
    VerificationMismatchError,
)
from shardwallet.transaction.gas import intrinsic_gas

__all__ = [
    "BroadcastFailedError",
    "EncodingFailureError",
    "InsufficientFundsError",
    "RPCFailureError",
    "SigningFailedError",
    "StakingTransaction",
    "Transaction",
    "TransactionError",
    "TransferTransaction",
    "VerificationMismatchError",
    "encode_payload",
    "intrinsic_gas",
    "new_staking_transaction",
    "new_transfer_transaction",
]
