"""Base interface for talking to a node.

A handler is bound to exactly one shard endpoint. Callers never discover
shards themselves; they are handed a handler for the shard they need.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


class RPCMethod:
    """JSON-RPC method names used by the wallet."""

    GET_BALANCE = "hmy_getBalance"
    GET_TRANSACTION_COUNT = "hmy_getTransactionCount"
    SEND_RAW_TRANSACTION = "hmy_sendRawTransaction"
    SEND_RAW_STAKING_TRANSACTION = "hmy_sendRawStakingTransaction"
    GET_TRANSACTION_RECEIPT = "hmy_getTransactionReceipt"


class RPCError(Exception):
    """Raised when an RPC call fails.

    Transport failures, HTTP errors and JSON-RPC error replies are not
    distinguished by callers; ``code`` is set only for JSON-RPC errors.
    """

    def __init__(self, message: str, method: str = "", code: Optional[int] = None):
        self.method = method
        self.code = code
        super().__init__(message)


class NetworkHandler(ABC):
    """Abstract RPC client bound to one shard endpoint."""

    @abstractmethod
    async def send_rpc(self, method: str, params: list[Any]) -> dict:
        """Send one RPC request.

        Args:
            method: RPC method name (see RPCMethod)
            params: Positional parameters

        Returns:
            The reply mapping; the value is under ``"result"``

        Raises:
            RPCError: On any failure
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
