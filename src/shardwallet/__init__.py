"""shardwallet - build, sign and send sharded and staking transactions."""

from shardwallet.transaction.controller import (
    Controller,
    ControllerBehavior,
    TransactionResult,
    TransactionStatus,
)

__version__ = "0.1.0"

__all__ = [
    "Controller",
    "ControllerBehavior",
    "TransactionResult",
    "TransactionStatus",
]
