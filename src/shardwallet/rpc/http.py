"""JSON-RPC over HTTP using httpx."""

import itertools
import logging
from typing import Any, Optional

import httpx

from shardwallet.rpc.base import NetworkHandler, RPCError

logger = logging.getLogger(__name__)


class HTTPMessenger(NetworkHandler):
    """Network handler posting JSON-RPC 2.0 requests to one endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize messenger.

        Args:
            url: Shard RPC endpoint
            timeout: Request timeout in seconds
            client: Optional preconfigured client (shared or for testing)
        """
        self.url = url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send_rpc(self, method: str, params: list[Any]) -> dict:
        """Post a JSON-RPC request and return the reply mapping."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        logger.debug(f"RPC {method} -> {self.url}")

        try:
            response = await self._get_client().post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise RPCError(
                f"{method} failed with HTTP {e.response.status_code}", method=method
            ) from e
        except httpx.HTTPError as e:
            raise RPCError(f"{method} request to {self.url} failed: {e}", method=method) from e
        except ValueError as e:
            raise RPCError(f"{method} returned invalid JSON: {e}", method=method) from e

        if not isinstance(data, dict):
            raise RPCError(f"{method} returned unexpected reply: {data!r}", method=method)

        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise RPCError(
                    error.get("message", str(error)), method=method, code=error.get("code")
                )
            raise RPCError(str(error), method=method)

        return data

    async def close(self) -> None:
        """Close the underlying client if this messenger created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HTTPMessenger":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"HTTPMessenger(url={self.url})"
