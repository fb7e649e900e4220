"""Base JSON-RPC client shared by the chain-specific clients.

Transport problems (timeouts, connection errors, HTTP 5xx / 429) raise
``RpcTransportError`` so the endpoint pool can rotate to the next endpoint.
A well-formed JSON-RPC error payload raises ``RpcError`` and is not retried.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

import httpx

from depowatch.chains import ChainConfig, TokenConfig

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """JSON-RPC error returned by the node."""

    def __init__(self, method: str, code: Optional[int], message: str):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed ({code}): {message}")


class RpcTransportError(Exception):
    """The endpoint could not be reached or answered with a server error."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"{url}: {reason}")


class RpcClient(ABC):
    """JSON-RPC client bound to one endpoint of one chain."""

    def __init__(
        self,
        chain: ChainConfig,
        url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.chain = chain
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send one JSON-RPC request and return its ``result``."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._get_client().post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise RpcTransportError(self.url, f"{type(e).__name__}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise RpcTransportError(self.url, f"HTTP {response.status_code}")
        if response.status_code != 200:
            raise RpcError(method, response.status_code, response.text[:200])

        try:
            data = response.json()
        except ValueError as e:
            raise RpcTransportError(self.url, "invalid JSON response") from e

        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise RpcError(method, error.get("code"), str(error.get("message", "")))
            raise RpcError(method, None, str(error))

        return data.get("result")

    @abstractmethod
    async def get_current_height(self) -> int:
        """Get the current block height (account chains) or slot (Solana)."""
        pass

    @abstractmethod
    async def get_block(self, height: int, include_transactions: bool = True) -> Optional[Any]:
        """Get a block by height, or None if the node has no such block."""
        pass

    @abstractmethod
    async def get_native_balance(self, address: str) -> Decimal:
        """Get the native token balance of an address."""
        pass

    @abstractmethod
    async def get_token_balance(self, address: str, token: TokenConfig) -> Decimal:
        """Get a token balance (ERC-20 contract or SPL mint) of an address."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.chain.name}, {self.url})"


def create_client(
    chain: ChainConfig,
    url: str,
    timeout: float = 15.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RpcClient:
    """Create the RPC client matching a chain's family."""
    if chain.is_account_chain:
        from depowatch.rpc.evm import EvmRpcClient

        return EvmRpcClient(chain, url, timeout=timeout, transport=transport)

    from depowatch.rpc.solana import SolanaRpcClient

    return SolanaRpcClient(chain, url, timeout=timeout, transport=transport)
