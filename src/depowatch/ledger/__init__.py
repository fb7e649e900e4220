"""Ledger module for deposit records and stored balances."""

from depowatch.ledger.database import close_db, get_db, get_session_factory, init_db
from depowatch.ledger.models import (
    Balance,
    ChainCursor,
    Deposit,
    DetectionMethod,
    ProcessedStatus,
    ProcessedTransaction,
    WalletAddress,
)
from depowatch.ledger.repository import LedgerRepository

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "get_session_factory",
    "Balance",
    "ChainCursor",
    "Deposit",
    "DetectionMethod",
    "ProcessedStatus",
    "ProcessedTransaction",
    "WalletAddress",
    "LedgerRepository",
]
