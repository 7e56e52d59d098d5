"""Node RPC access.

- NetworkHandler: abstract shard-bound RPC client
- HTTPMessenger: JSON-RPC over HTTP
"""

from shardwallet.rpc.base import NetworkHandler, RPCError, RPCMethod
from shardwallet.rpc.factory import BEACON_SHARD, handler_for_shard
from shardwallet.rpc.http import HTTPMessenger

__all__ = [
    "BEACON_SHARD",
    "HTTPMessenger",
    "NetworkHandler",
    "RPCError",
    "RPCMethod",
    "handler_for_shard",
]
