"""RPC endpoint pool with failover rotation.

Each chain has a primary endpoint plus ordered fallbacks. When an endpoint
fails its liveness probe (or a call fails at the transport level) the pool
rotates to the next one and retries, up to ``max_retries`` attempts with a
fixed ``retry_delay`` between them.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from depowatch.chains import ChainConfig, get_chain
from depowatch.config import Settings, get_settings
from depowatch.errors import EndpointExhausted
from depowatch.rpc.base import RpcClient, RpcError, RpcTransportError, create_client

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ChainConfig, str, float], RpcClient]


def _default_factory(chain: ChainConfig, url: str, timeout: float) -> RpcClient:
    return create_client(chain, url, timeout=timeout)


class ChainConnection:
    """Failover state for one chain."""

    def __init__(self, chain: ChainConfig, urls: list[str], factory: ClientFactory, timeout: float):
        self.chain = chain
        self.urls = urls
        self.index = 0
        self.consecutive_failures = 0
        self.healthy = True
        self._factory = factory
        self._timeout = timeout
        self._clients: dict[str, RpcClient] = {}

    @property
    def current_url(self) -> Optional[str]:
        if not self.urls:
            return None
        return self.urls[self.index]

    @property
    def client(self) -> RpcClient:
        url = self.current_url
        if url not in self._clients:
            self._clients[url] = self._factory(self.chain, url, self._timeout)
        return self._clients[url]

    def rotate(self) -> None:
        """Advance to the next endpoint (wraps around)."""
        if self.urls:
            self.index = (self.index + 1) % len(self.urls)

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.healthy = True

    def record_failure(self) -> None:
        self.consecutive_failures += 1

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class EndpointPool:
    """Per-process pool of chain connections, injected into scanners."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.settings = settings or get_settings()
        self._factory = client_factory or _default_factory
        self._connections: dict[str, ChainConnection] = {}

    def connection(self, chain: str) -> ChainConnection:
        """Get (or create) the connection state for a chain."""
        config = get_chain(chain)
        if config.name not in self._connections:
            urls = self.settings.get_rpc_urls(config.name)
            self._connections[config.name] = ChainConnection(
                config, urls, self._factory, self.settings.rpc_timeout
            )
        return self._connections[config.name]

    async def acquire(self, chain: str) -> RpcClient:
        """Return a live client for the chain, probing and rotating as needed.

        Raises:
            EndpointExhausted: If every attempt failed the liveness probe
        """
        conn = self.connection(chain)
        if not conn.urls:
            conn.healthy = False
            raise EndpointExhausted(conn.chain.name, 0)

        last_error: Optional[BaseException] = None
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            client = conn.client
            try:
                await client.get_current_height()
                conn.record_success()
                return client
            except (RpcTransportError, RpcError, asyncio.TimeoutError) as e:
                last_error = e
                self._on_failure(conn, attempt, attempts, e)

            if attempt < attempts:
                await asyncio.sleep(self.settings.retry_delay)

        conn.healthy = False
        logger.error(f"All {conn.chain.display_name} endpoints failed, skipping chain")
        raise EndpointExhausted(conn.chain.name, attempts, last_error)

    async def call(self, chain: str, fn: Callable[[RpcClient], Awaitable[Any]]) -> Any:
        """Run one RPC operation, rotating endpoints on transport failures.

        ``RpcError`` (a JSON-RPC error payload) is raised to the caller as is.

        Raises:
            EndpointExhausted: If every attempt failed at the transport level
        """
        conn = self.connection(chain)
        if not conn.urls:
            conn.healthy = False
            raise EndpointExhausted(conn.chain.name, 0)

        last_error: Optional[BaseException] = None
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            try:
                result = await fn(conn.client)
                conn.record_success()
                return result
            except (RpcTransportError, asyncio.TimeoutError) as e:
                last_error = e
                self._on_failure(conn, attempt, attempts, e)

            if attempt < attempts:
                await asyncio.sleep(self.settings.retry_delay)

        conn.healthy = False
        raise EndpointExhausted(conn.chain.name, attempts, last_error)

    def _on_failure(self, conn: ChainConnection, attempt: int, attempts: int, error: BaseException) -> None:
        conn.record_failure()
        logger.warning(
            f"{conn.chain.display_name} endpoint {conn.current_url} failed "
            f"(attempt {attempt}/{attempts}): {error}"
        )
        previous = conn.current_url
        conn.rotate()
        if conn.current_url != previous:
            logger.info(f"Switching {conn.chain.display_name} RPC to {conn.current_url}")

    def is_healthy(self, chain: str) -> bool:
        return self.connection(chain).healthy

    def status(self) -> dict[str, dict]:
        """Get a loggable view of every connection."""
        return {
            name: {
                "endpoint": self.settings._redact_url(conn.current_url or ""),
                "endpoints": len(conn.urls),
                "healthy": conn.healthy,
                "consecutive_failures": conn.consecutive_failures,
            }
            for name, conn in self._connections.items()
        }

    async def close(self) -> None:
        """Close every HTTP client held by the pool."""
        for conn in self._connections.values():
            await conn.close()
