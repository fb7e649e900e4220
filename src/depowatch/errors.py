"""Error taxonomy for the deposit watcher.

Failures are isolated to the smallest unit of work (one block, one address,
one token, one chain). Only directory-wide or process-level failures are fatal.
"""

from typing import Optional


class DepowatchError(Exception):
    """Base class for all deposit watcher errors."""

    pass


class EndpointExhausted(DepowatchError):
    """Every RPC endpoint for a chain failed; the chain is skipped for this pass."""

    def __init__(self, chain: str, attempts: int, last_error: Optional[BaseException] = None):
        self.chain = chain
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"All {chain} endpoints failed after {attempts} attempts{detail}")


class BlockFetchError(DepowatchError):
    """A single block could not be fetched; its deposits are permanently missed."""

    def __init__(self, chain: str, height: int, reason: str = ""):
        self.chain = chain
        self.height = height
        super().__init__(f"Failed to fetch {chain} block {height}: {reason}")


class AddressInvalid(DepowatchError):
    """Malformed address from the directory; excluded from monitoring."""

    def __init__(self, chain: str, address: str, user_id: Optional[str] = None):
        self.chain = chain
        self.address = address
        self.user_id = user_id
        super().__init__(f"Invalid {chain} address for user {user_id}: {address}")


class DirectoryUnavailable(DepowatchError):
    """The address directory could not be queried at all."""

    pass


class LedgerWriteConflict(DepowatchError):
    """A transaction hash was already recorded. Callers treat this as success."""

    def __init__(self, chain: str, tx_hash: str):
        self.chain = chain
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} on {chain} already recorded")


class ScanAlreadyRunning(DepowatchError):
    """An orchestrated pass is already in progress."""

    pass
