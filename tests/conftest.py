"""Pytest configuration and fixtures."""

import os
from collections import defaultdict
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"

from depowatch.chains import TokenConfig
from depowatch.config import Settings
from depowatch.endpoints import EndpointPool
from depowatch.ledger.models import Base
from depowatch.ledger.repository import LedgerRepository
from depowatch.rpc.base import RpcError, RpcTransportError
from depowatch.rpc.evm import EvmBlock
from depowatch.utils.locks import clear_wallet_locks


class FakeNetwork:
    """In-memory chain state shared by every fake client."""

    def __init__(self):
        self.heights: dict[str, int] = {}
        self.blocks: dict[str, dict[int, EvmBlock]] = defaultdict(dict)
        self.failing_blocks: dict[str, set[int]] = defaultdict(set)
        self.malformed_blocks: dict[str, set[int]] = defaultdict(set)
        self.native: dict[tuple[str, str], Decimal] = {}
        self.tokens: dict[tuple[str, str, str], Decimal] = {}  # (chain, address, symbol)
        self.failing_tokens: set[tuple[str, str, str]] = set()
        self.holdings: dict[str, list] = {}
        self.signatures: dict[str, list] = {}
        self.transactions: dict[str, object] = {}
        self.failing_transactions: set[str] = set()
        self.down: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def check(self, url: str, method: str) -> None:
        self.calls.append((url, method))
        if url in self.down:
            raise RpcTransportError(url, "connection refused")


class FakeClient:
    """Stand-in for an RPC client, bound to one endpoint URL."""

    def __init__(self, network: FakeNetwork, chain, url: str):
        self.network = network
        self.chain = chain
        self.url = url
        self.closed = False

    async def get_current_height(self) -> int:
        self.network.check(self.url, "height")
        return self.network.heights.get(self.chain.name, 0)

    async def get_block(self, height: int, include_transactions: bool = True) -> Optional[EvmBlock]:
        self.network.check(self.url, "block")
        if height in self.network.failing_blocks[self.chain.name]:
            raise RpcError("eth_getBlockByNumber", -32000, f"block {height} unavailable")
        if height in self.network.malformed_blocks[self.chain.name]:
            raise ValueError("invalid literal for int() with base 16: 'zz'")
        return self.network.blocks[self.chain.name].get(height, EvmBlock(height, 1700000000, []))

    async def get_native_balance(self, address: str) -> Decimal:
        self.network.check(self.url, "native")
        return self.network.native.get((self.chain.name, address), Decimal("0"))

    async def get_token_balance(self, address: str, token: TokenConfig) -> Decimal:
        self.network.check(self.url, "token")
        key = (self.chain.name, address, token.symbol)
        if key in self.network.failing_tokens:
            raise RpcError("eth_call", -32000, "execution reverted")
        return self.network.tokens.get(key, Decimal("0"))

    async def get_token_accounts(self, owner: str) -> list:
        self.network.check(self.url, "token_accounts")
        return list(self.network.holdings.get(owner, []))

    async def get_signatures_for_address(self, address: str, limit: int = 10) -> list:
        self.network.check(self.url, "signatures")
        return list(self.network.signatures.get(address, []))[:limit]

    async def get_transaction(self, signature: str):
        self.network.check(self.url, "transaction")
        if signature in self.network.failing_transactions:
            raise RpcError("getTransaction", -32000, "transaction unavailable")
        return self.network.transactions.get(signature)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_wallet_locks():
    """Start every test with an empty lock registry."""
    clear_wallet_locks()
    yield
    clear_wallet_locks()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with two endpoints per chain and no retry delay."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        ethereum_rpc_url="https://eth-primary.test",
        ethereum_fallback_rpc_urls="https://eth-backup.test",
        bsc_rpc_url="https://bsc-primary.test",
        bsc_fallback_rpc_urls="https://bsc-backup.test",
        solana_rpc_url="https://sol-primary.test",
        solana_fallback_rpc_urls="https://sol-backup.test",
        max_retries=3,
        retry_delay=0,
        batch_size=2,
        max_workers=2,
        reconciliation_window=900,
        snapshot_file=str(tmp_path / "balance_snapshot.json"),
    )


@pytest.fixture
def network() -> FakeNetwork:
    """Fake chain state for the endpoint pool."""
    return FakeNetwork()


@pytest.fixture
def pool(settings, network) -> EndpointPool:
    """Endpoint pool whose clients read from the fake network."""
    return EndpointPool(
        settings,
        client_factory=lambda chain, url, timeout: FakeClient(network, chain, url),
    )
