"""Errors originated by the transaction pipeline."""

from typing import Optional


class TransactionError(Exception):
    """Base class for pipeline failures.

    Attributes:
        step: Name of the pipeline step that failed (set by the controller)
    """

    kind = "transaction_error"

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        super().__init__(message)


class InsufficientFundsError(TransactionError):
    """Sender balance is lower than the requested amount."""

    kind = "insufficient_funds"


class VerificationMismatchError(TransactionError):
    """Hardware device signed with a different address than the sender."""

    kind = "verification_mismatch"


class RPCFailureError(TransactionError):
    """A network call made by a pipeline step failed."""

    kind = "rpc_failure"


class BroadcastFailedError(RPCFailureError):
    """The node rejected or failed to accept the signed transaction."""

    kind = "broadcast_failed"


class EncodingFailureError(TransactionError):
    """A payload could not be assembled or serialized."""

    kind = "encoding_failure"


class SigningFailedError(TransactionError):
    """The signing backend could not produce a signature."""

    kind = "signing_failed"
