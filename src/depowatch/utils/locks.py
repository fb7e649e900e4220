"""Concurrency control for wallet balance writes.

Provides per-wallet locking so that the real-time monitor and a batch pass
never interleave a read-modify-write of the same stored balance.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: (chain, address) -> asyncio.Lock
_wallet_locks: dict[tuple[str, str], asyncio.Lock] = {}
_registry_lock = asyncio.Lock()


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


async def get_wallet_lock(chain: str, address: str) -> asyncio.Lock:
    """Get or create the lock for a wallet.

    Args:
        chain: Canonical chain name
        address: Wallet address as stored in the ledger

    Returns:
        asyncio.Lock for the wallet
    """
    key = (chain, address)
    async with _registry_lock:
        if key not in _wallet_locks:
            _wallet_locks[key] = asyncio.Lock()
        return _wallet_locks[key]


@asynccontextmanager
async def wallet_lock(
    chain: str,
    address: str,
    timeout: Optional[float] = 30.0,
    operation: str = "balance_write",
):
    """Hold exclusive access to one wallet's stored balances.

    Example:
        async with wallet_lock("ethereum", address, operation="deposit"):
            balance = await repo.get_balance(...)
            await repo.set_balance(...)
    """
    lock = await get_wallet_lock(chain, address)
    acquired = False

    try:
        if timeout:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        else:
            await lock.acquire()
        acquired = True
    except asyncio.TimeoutError:
        logger.warning(f"Lock timeout for {chain}:{address} after {timeout}s: {operation}")
        raise LockTimeoutError(
            f"Could not acquire lock for {chain}:{address} within {timeout}s"
        )

    logger.debug(f"Lock acquired for {chain}:{address}: {operation}")
    try:
        yield
    finally:
        if acquired:
            lock.release()
            logger.debug(f"Lock released for {chain}:{address}: {operation}")


def clear_wallet_locks() -> None:
    """Clear all wallet locks (useful for testing)."""
    _wallet_locks.clear()
