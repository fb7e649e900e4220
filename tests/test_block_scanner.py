"""Tests for the account-chain block scanner."""

from decimal import Decimal

import pytest

from depowatch.directory import MonitoredAddress
from depowatch.errors import EndpointExhausted
from depowatch.ledger.models import DetectionMethod
from depowatch.rpc.base import RpcTransportError
from depowatch.rpc.evm import EvmBlock, EvmTransaction
from depowatch.scanner.blocks import AccountChainBlockScanner
from depowatch.scanner.cursors import CursorStore

WALLET = "0x" + "11" * 20
OTHER = "0x" + "22" * 20
SENDER = "0x" + "33" * 20
ONE_ETH = 10**18


def transfer(tx_hash: str, to: str, value_wei: int) -> EvmTransaction:
    return EvmTransaction(hash=tx_hash, from_address=SENDER, to_address=to, value_wei=value_wei)


@pytest.fixture
def cursors(session_factory) -> CursorStore:
    return CursorStore(session_factory)


@pytest.fixture
def scanner(pool, cursors) -> AccountChainBlockScanner:
    return AccountChainBlockScanner("ethereum", pool, cursors, Decimal("0.000001"))


@pytest.fixture
def addresses() -> list[MonitoredAddress]:
    return [MonitoredAddress("ethereum", WALLET, "user-1")]


class TestBlockScanner:
    """Tests for block-range deposit detection."""

    @pytest.mark.asyncio
    async def test_first_run_initializes_cursor(self, scanner, cursors, network, addresses):
        """No backfill: the cursor starts at the head and nothing is emitted."""
        network.heights["ethereum"] = 1000
        network.blocks["ethereum"][1000] = EvmBlock(1000, 0, [transfer("0xold", WALLET, ONE_ETH)])

        report = await scanner.scan(addresses)

        assert report.initialized
        assert report.candidates == []
        cursor = await cursors.get("ethereum")
        assert cursor.height == 1000
        assert cursor.origin_height == 1000
        assert not [c for c in network.calls if c[1] == "block"]

    @pytest.mark.asyncio
    async def test_detects_deposit_in_range(self, scanner, cursors, network, addresses):
        await cursors.initialize("ethereum", 100)
        network.heights["ethereum"] = 102
        network.blocks["ethereum"][101] = EvmBlock(
            101,
            1700000000,
            [
                transfer("0xdeposit", WALLET, 3 * ONE_ETH // 2),
                transfer("0xelsewhere", OTHER, ONE_ETH),
            ],
        )

        report = await scanner.scan(addresses)

        assert len(report.candidates) == 1
        candidate = report.candidates[0]
        assert candidate.tx_hash == "0xdeposit"
        assert candidate.amount == Decimal("1.5")
        assert candidate.token == "ETH"
        assert candidate.user_id == "user-1"
        assert candidate.counterparty_address == SENDER
        assert candidate.block_height == 101
        assert candidate.detection_method == DetectionMethod.TRANSACTION
        assert report.end_height == 102
        assert (await cursors.get("ethereum")).height == 102

    @pytest.mark.asyncio
    async def test_recipient_match_is_case_insensitive(self, scanner, cursors, network):
        await cursors.initialize("ethereum", 10)
        network.heights["ethereum"] = 11
        network.blocks["ethereum"][11] = EvmBlock(11, 0, [transfer("0xa", WALLET, ONE_ETH)])
        mixed = [MonitoredAddress("ethereum", WALLET.upper().replace("0X", "0x"), "user-1")]

        report = await scanner.scan(mixed)

        assert len(report.candidates) == 1

    @pytest.mark.asyncio
    async def test_dust_filtered(self, scanner, cursors, network, addresses):
        """Values below the minimum are ignored; the minimum itself qualifies."""
        await cursors.initialize("ethereum", 10)
        network.heights["ethereum"] = 11
        network.blocks["ethereum"][11] = EvmBlock(
            11,
            0,
            [
                transfer("0xdust", WALLET, 10**11),  # 0.0000001 ETH
                transfer("0xmin", WALLET, 10**12),  # 0.000001 ETH
            ],
        )

        report = await scanner.scan(addresses)

        assert [c.tx_hash for c in report.candidates] == ["0xmin"]

    @pytest.mark.asyncio
    async def test_failed_block_is_skipped_permanently(self, scanner, cursors, network, addresses):
        """A failed block is reported, the cursor moves past it and it is never revisited."""
        await cursors.initialize("ethereum", 50)
        network.heights["ethereum"] = 52
        network.blocks["ethereum"][51] = EvmBlock(51, 0, [transfer("0xlost", WALLET, ONE_ETH)])
        network.blocks["ethereum"][52] = EvmBlock(52, 0, [transfer("0xfound", WALLET, ONE_ETH)])
        network.failing_blocks["ethereum"].add(51)

        report = await scanner.scan(addresses)

        assert [c.tx_hash for c in report.candidates] == ["0xfound"]
        assert report.skipped_units == 1
        assert report.outcomes[0].unit == "block 51"
        assert report.outcomes[0].kind == "BlockFetchError"
        assert (await cursors.get("ethereum")).height == 52

        # Block 51 recovers, but the next pass starts after the cursor
        network.failing_blocks["ethereum"].clear()
        network.heights["ethereum"] = 53
        report = await scanner.scan(addresses)

        assert report.candidates == []
        assert report.start_height == 53

    @pytest.mark.asyncio
    async def test_malformed_block_does_not_stall_chain(self, scanner, cursors, network, addresses):
        """An unreadable block body is skipped like a failed fetch."""
        await cursors.initialize("ethereum", 100)
        network.heights["ethereum"] = 103
        network.malformed_blocks["ethereum"].add(101)
        network.blocks["ethereum"][102] = EvmBlock(102, 0, [transfer("0xafter", WALLET, ONE_ETH)])

        report = await scanner.scan(addresses)

        assert [c.tx_hash for c in report.candidates] == ["0xafter"]
        assert report.outcomes[0].unit == "block 101"
        assert report.outcomes[0].kind == "BlockFetchError"
        assert (await cursors.get("ethereum")).height == 103

    @pytest.mark.asyncio
    async def test_cursor_never_decreases(self, scanner, cursors, network, addresses):
        """A node reporting an older head does not move the cursor back."""
        await cursors.initialize("ethereum", 200)
        network.heights["ethereum"] = 190

        report = await scanner.scan(addresses)

        assert report.candidates == []
        assert (await cursors.get("ethereum")).height == 200
        assert await cursors.advance("ethereum", 150) == 200

    @pytest.mark.asyncio
    async def test_no_addresses_advances_cursor(self, scanner, cursors, network):
        await cursors.initialize("ethereum", 10)
        network.heights["ethereum"] = 20

        report = await scanner.scan([])

        assert report.end_height == 20
        assert not [c for c in network.calls if c[1] == "block"]

    @pytest.mark.asyncio
    async def test_chain_down_raises(self, scanner, network, addresses):
        """An unreachable chain is left to the caller to skip."""
        network.down.update({"https://eth-primary.test", "https://eth-backup.test"})

        with pytest.raises(EndpointExhausted):
            await scanner.scan(addresses)

    @pytest.mark.asyncio
    async def test_outage_mid_range_stops_at_last_attempted(
        self, scanner, cursors, network, addresses
    ):
        await cursors.initialize("ethereum", 10)
        network.heights["ethereum"] = 15

        # Every endpoint fails from the third block on
        def take_down(url, method):
            network.calls.append((url, method))
            if method == "block" and len([c for c in network.calls if c[1] == "block"]) > 2:
                raise RpcTransportError(url, "connection reset")

        network.check = take_down

        report = await scanner.scan(addresses)

        assert report.outcomes[-1].kind == "EndpointExhausted"
        assert (await cursors.get("ethereum")).height == 12

    def test_rejects_slot_chain(self, pool, cursors):
        with pytest.raises(ValueError):
            AccountChainBlockScanner("solana", pool, cursors)
