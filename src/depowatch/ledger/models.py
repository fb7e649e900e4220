"""SQLAlchemy models for the deposit ledger."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DetectionMethod(str, Enum):
    """How a deposit was detected."""

    TRANSACTION = "transaction"
    BALANCE_DIFF = "balance-diff"


class ProcessedStatus(str, Enum):
    """How a processed transaction hash is accounted for."""

    RECORDED = "recorded"      # A deposit was created from it
    RECONCILED = "reconciled"  # Linked to an earlier balance-diff deposit


class WalletAddress(Base):
    """Monitored address of a user on one chain (the address directory)."""

    __tablename__ = "wallet_addresses"
    __table_args__ = (Index("ix_wallet_addresses_user_chain", "user_id", "chain", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    chain: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class Balance(Base):
    """Stored per-token balance of a wallet.

    Serves both as the user's running balance and as the snapshot baseline
    that balance-diff detection compares against.
    """

    __tablename__ = "balances"
    __table_args__ = (
        Index("ix_balances_chain_address_token", "chain", "address", "token", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    chain: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False)  # canonical symbol
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), default=Decimal("0"))
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class Deposit(Base):
    """Append-only record of a detected deposit."""

    __tablename__ = "deposits"
    __table_args__ = (Index("ix_deposits_wallet_token", "chain", "wallet_address", "token"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    chain: Mapped[str] = mapped_column(String(20), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(255), nullable=False)
    counterparty_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    previous_balance: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    new_balance: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    detection_method: Mapped[DetectionMethod] = mapped_column(String(20), nullable=False)
    block_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ProcessedTransaction(Base):
    """Tracks processed transaction hashes for idempotent deposit writes.

    Prevents double-crediting when the same transaction is seen twice, by the
    same scanner on a later pass or by both detection paths. One transaction
    may pay several monitored wallets, so a hash is unique per recipient and
    token.
    """

    __tablename__ = "processed_transactions"
    __table_args__ = (
        Index(
            "ix_processed_tx_recipient",
            "chain",
            "tx_hash",
            "to_address",
            "token",
            unique=True,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(20), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[ProcessedStatus] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    to_address: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    deposit_id: Mapped[Optional[int]] = mapped_column(ForeignKey("deposits.id"), nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ChainCursor(Base):
    """Last processed block height (or slot) of a chain scanner."""

    __tablename__ = "chain_cursors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chain: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    height: Mapped[int] = mapped_column(BigInteger, default=0)
    origin_height: Mapped[int] = mapped_column(BigInteger, default=0)  # height at first run
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
