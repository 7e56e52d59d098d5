"""Pytest configuration and fixtures."""

import os
from typing import Any, Optional

import pytest
from eth_keys import keys
from eth_utils import keccak

# Set test environment
os.environ["SHARDWALLET_NODE"] = "http://localhost:9500"
os.environ["SHARDWALLET_DEBUG"] = "true"

from shardwallet import address
from shardwallet.rpc.base import NetworkHandler, RPCError, RPCMethod
from shardwallet.signing.keystore import LocalKeystoreSigner

SENDER_KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_KEY = "8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"
RECEIVER_HEX = "0x00000000000000000000000000000000000000aa"
TX_HASH = "0x" + "ab" * 32
ONE = 10**18


def address_of(private_key_hex: str) -> str:
    """Bech32 address of a private key."""
    pk = keys.PrivateKey(bytes.fromhex(private_key_hex))
    return address.to_bech32(pk.public_key.to_canonical_address())


class FakeNetworkHandler(NetworkHandler):
    """Network handler returning scripted replies and recording calls.

    A reply can be a value, an exception instance (raised) or a list
    consumed one item per call (the last item repeats).
    """

    def __init__(self, replies: Optional[dict[str, Any]] = None):
        self.calls: list[tuple[str, list]] = []
        self.replies: dict[str, Any] = {
            RPCMethod.GET_BALANCE: hex(10 * ONE),
            RPCMethod.GET_TRANSACTION_COUNT: "0x2",
            RPCMethod.SEND_RAW_TRANSACTION: TX_HASH,
            RPCMethod.SEND_RAW_STAKING_TRANSACTION: TX_HASH,
            RPCMethod.GET_TRANSACTION_RECEIPT: None,
        }
        self.replies.update(replies or {})

    async def send_rpc(self, method: str, params: list) -> dict:
        self.calls.append((method, params))
        reply = self.replies[method]

        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if isinstance(reply, Exception):
            raise reply

        return {"jsonrpc": "2.0", "id": len(self.calls), "result": reply}

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


class FakeDevice:
    """Hardware device double signing with an in-memory key."""

    def __init__(self, private_key_hex: str, claimed_address: Optional[str] = None):
        self._key = keys.PrivateKey(bytes.fromhex(private_key_hex))
        self._claimed = claimed_address
        self.requests: list[tuple[bytes, int]] = []

    def get_address(self) -> str:
        return self._claimed or address.to_bech32(self._key.public_key.to_canonical_address())

    def sign_transaction(self, preimage: bytes, chain_id: int) -> tuple[bytes, str]:
        self.requests.append((preimage, chain_id))
        signature = self._key.sign_msg_hash(keccak(preimage))
        return signature.to_bytes(), self.get_address()

    def sign_staking_transaction(self, preimage: bytes, chain_id: int) -> tuple[bytes, str]:
        return self.sign_transaction(preimage, chain_id)


@pytest.fixture
def sender() -> str:
    return address_of(SENDER_KEY)


@pytest.fixture
def receiver() -> str:
    return address.to_bech32(address.parse(RECEIVER_HEX))


@pytest.fixture
def handler() -> FakeNetworkHandler:
    return FakeNetworkHandler()


@pytest.fixture
def local_signer() -> LocalKeystoreSigner:
    return LocalKeystoreSigner.from_private_key(SENDER_KEY)


@pytest.fixture
def rpc_error() -> RPCError:
    return RPCError("connection refused")
