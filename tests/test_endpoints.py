"""Tests for the endpoint pool failover."""

import pytest

from depowatch.errors import EndpointExhausted
from depowatch.rpc.base import RpcError


class TestAcquire:
    """Tests for probing and rotating endpoints."""

    @pytest.mark.asyncio
    async def test_acquire_primary(self, pool, network):
        """A healthy primary is returned without rotation."""
        network.heights["ethereum"] = 100

        client = await pool.acquire("ethereum")

        assert client.url == "https://eth-primary.test"
        assert pool.is_healthy("ethereum")

    @pytest.mark.asyncio
    async def test_failover_to_backup(self, pool, network):
        """A failing primary rotates to the fallback endpoint."""
        network.heights["ethereum"] = 100
        network.down.add("https://eth-primary.test")

        client = await pool.acquire("ethereum")

        assert client.url == "https://eth-backup.test"
        assert pool.connection("ethereum").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_all_endpoints_down(self, pool, network):
        """Exhausting every attempt raises EndpointExhausted."""
        network.down.update({"https://sol-primary.test", "https://sol-backup.test"})

        with pytest.raises(EndpointExhausted) as exc_info:
            await pool.acquire("solana")

        assert exc_info.value.chain == "solana"
        assert exc_info.value.attempts == 3
        assert not pool.is_healthy("solana")
        probes = [c for c in network.calls if c[1] == "height"]
        assert len(probes) == 3

    @pytest.mark.asyncio
    async def test_recovery_resets_health(self, pool, network):
        """A successful probe after exhaustion marks the chain healthy again."""
        network.down.update({"https://bsc-primary.test", "https://bsc-backup.test"})
        with pytest.raises(EndpointExhausted):
            await pool.acquire("bsc")

        network.down.clear()
        await pool.acquire("bsc")

        assert pool.is_healthy("bsc")
        assert pool.connection("bsc").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_chain_without_endpoints(self):
        from depowatch.config import Settings
        from depowatch.endpoints import EndpointPool

        pool = EndpointPool(Settings(ethereum_rpc_url="", ethereum_fallback_rpc_urls=""))

        with pytest.raises(EndpointExhausted):
            await pool.acquire("ethereum")


class TestCall:
    """Tests for running single operations through the pool."""

    @pytest.mark.asyncio
    async def test_transport_error_rotates(self, pool, network):
        network.heights["ethereum"] = 42
        network.down.add("https://eth-primary.test")

        height = await pool.call("ethereum", lambda c: c.get_current_height())

        assert height == 42
        assert pool.connection("ethereum").current_url == "https://eth-backup.test"

    @pytest.mark.asyncio
    async def test_rpc_error_not_retried(self, pool, network):
        """JSON-RPC errors go straight back to the caller."""
        network.failing_blocks["ethereum"].add(7)

        with pytest.raises(RpcError):
            await pool.call("ethereum", lambda c: c.get_block(7, True))

        block_calls = [c for c in network.calls if c[1] == "block"]
        assert len(block_calls) == 1

    @pytest.mark.asyncio
    async def test_status_and_close(self, pool, network):
        network.heights["solana"] = 5
        client = await pool.acquire("solana")

        status = pool.status()
        assert status["solana"]["healthy"] is True
        assert status["solana"]["endpoints"] == 2

        await pool.close()
        assert client.closed
