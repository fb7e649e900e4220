"""Deposit ledger writer.

The single place where a candidate deposit becomes durable state. Each write
holds the wallet lock and runs in one database transaction, so the deposit
record and the stored balance always change together.

Two detection paths feed the writer:

- transaction candidates carry a hash and are deduplicated on (hash,
  recipient, token), so one transaction paying several monitored wallets
  credits each of them. The stored balance is incremented by the amount.
- balance-diff candidates carry the observed balance. The delta is recomputed
  against the stored balance under the lock, so a deposit already credited
  by the transaction path yields no second record.

A transaction that arrives after a balance-diff record for the same amount
(within ``reconciliation_window``) is linked to that record instead.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depowatch.config import Settings, get_settings
from depowatch.errors import LedgerWriteConflict
from depowatch.ledger.database import get_db
from depowatch.ledger.models import DetectionMethod, ProcessedStatus, utcnow
from depowatch.ledger.repository import LedgerRepository
from depowatch.scanner.base import BalanceUpdate, DepositCandidate
from depowatch.utils.locks import wallet_lock

logger = logging.getLogger(__name__)


class WriteStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    RECONCILED = "reconciled"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class WriteResult:
    status: WriteStatus
    candidate: DepositCandidate
    deposit_id: Optional[int] = None

    @property
    def accepted(self) -> bool:
        return self.status == WriteStatus.ACCEPTED


class DepositLedgerWriter:
    """Persists deposits exactly once and maintains stored balances."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self.settings = settings or get_settings()

    @property
    def epsilon(self) -> Decimal:
        return self.settings.noise_threshold

    async def write(self, candidate: DepositCandidate) -> WriteResult:
        """Persist a candidate deposit."""
        if candidate.is_transaction:
            if not candidate.tx_hash:
                raise ValueError("Transaction candidates need a tx_hash")
            try:
                return await self._write_transaction(candidate)
            except LedgerWriteConflict:
                logger.debug(f"Transaction {candidate.tx_hash} already recorded")
                return WriteResult(WriteStatus.DUPLICATE, candidate)

        if candidate.new_balance is None:
            raise ValueError("Balance-diff candidates need a new_balance")
        return await self._write_balance_diff(candidate)

    async def _write_transaction(self, candidate: DepositCandidate) -> WriteResult:
        async with wallet_lock(candidate.chain, candidate.wallet_address, operation="deposit"):
            async with get_db(self._session_factory) as session:
                repo = LedgerRepository(session)

                if await repo.is_transaction_processed(
                    candidate.chain, candidate.tx_hash, candidate.wallet_address, candidate.token
                ):
                    raise LedgerWriteConflict(candidate.chain, candidate.tx_hash)

                since = utcnow() - timedelta(seconds=self.settings.reconciliation_window)
                match = await repo.find_reconcilable_deposit(
                    chain=candidate.chain,
                    wallet_address=candidate.wallet_address,
                    token=candidate.token,
                    amount=candidate.amount,
                    tolerance=self.epsilon,
                    since=since,
                )
                if match is not None:
                    await repo.mark_transaction_processed(
                        chain=candidate.chain,
                        tx_hash=candidate.tx_hash,
                        amount=candidate.amount,
                        to_address=candidate.wallet_address,
                        token=candidate.token,
                        status=ProcessedStatus.RECONCILED,
                        deposit_id=match.id,
                    )
                    logger.info(
                        f"Transaction {candidate.tx_hash} matches balance-diff deposit "
                        f"#{match.id}, not recorded again"
                    )
                    return WriteResult(WriteStatus.RECONCILED, candidate, match.id)

                balance = await repo.get_balance(
                    candidate.chain, candidate.wallet_address, candidate.token
                )
                previous = balance.amount if balance else Decimal("0")
                new_balance = previous + candidate.amount

                deposit = await repo.create_deposit(
                    user_id=candidate.user_id,
                    chain=candidate.chain,
                    wallet_address=candidate.wallet_address,
                    token=candidate.token,
                    amount=candidate.amount,
                    previous_balance=previous,
                    new_balance=new_balance,
                    detection_method=DetectionMethod.TRANSACTION,
                    tx_hash=candidate.tx_hash,
                    counterparty_address=candidate.counterparty_address,
                    block_height=candidate.block_height,
                )
                await repo.mark_transaction_processed(
                    chain=candidate.chain,
                    tx_hash=candidate.tx_hash,
                    amount=candidate.amount,
                    to_address=candidate.wallet_address,
                    token=candidate.token,
                    deposit_id=deposit.id,
                )
                await repo.set_balance(
                    candidate.user_id,
                    candidate.chain,
                    candidate.wallet_address,
                    candidate.token,
                    new_balance,
                )

        logger.info(
            f"Deposit recorded: {candidate.amount} {candidate.token} to user "
            f"{candidate.user_id} on {candidate.chain} (tx {candidate.tx_hash})"
        )
        return WriteResult(WriteStatus.ACCEPTED, candidate, deposit.id)

    async def _write_balance_diff(self, candidate: DepositCandidate) -> WriteResult:
        async with wallet_lock(candidate.chain, candidate.wallet_address, operation="balance_diff"):
            async with get_db(self._session_factory) as session:
                repo = LedgerRepository(session)

                balance = await repo.get_balance(
                    candidate.chain, candidate.wallet_address, candidate.token
                )
                stored = balance.amount if balance else Decimal("0")
                delta = candidate.new_balance - stored

                if delta <= self.epsilon:
                    logger.debug(
                        f"Discarding balance-diff for {candidate.wallet_address} "
                        f"{candidate.token}: stored balance already {stored}"
                    )
                    return WriteResult(WriteStatus.DISCARDED, candidate)

                deposit = await repo.create_deposit(
                    user_id=candidate.user_id,
                    chain=candidate.chain,
                    wallet_address=candidate.wallet_address,
                    token=candidate.token,
                    amount=delta,
                    previous_balance=stored,
                    new_balance=candidate.new_balance,
                    detection_method=DetectionMethod.BALANCE_DIFF,
                )
                await repo.set_balance(
                    candidate.user_id,
                    candidate.chain,
                    candidate.wallet_address,
                    candidate.token,
                    candidate.new_balance,
                )

        logger.info(
            f"Deposit recorded: {delta} {candidate.token} to user {candidate.user_id} "
            f"on {candidate.chain} (balance {stored} -> {candidate.new_balance})"
        )
        return WriteResult(WriteStatus.ACCEPTED, candidate, deposit.id)

    async def apply_update(self, update: BalanceUpdate) -> None:
        """Supersede a stored snapshot without recording a deposit."""
        async with wallet_lock(update.chain, update.wallet_address, operation="snapshot"):
            async with get_db(self._session_factory) as session:
                await LedgerRepository(session).set_balance(
                    update.user_id,
                    update.chain,
                    update.wallet_address,
                    update.token,
                    update.new_balance,
                )
        logger.debug(
            f"Snapshot {update.chain}:{update.wallet_address} {update.token} "
            f"{update.previous_balance} -> {update.new_balance}"
        )

    async def load_baselines(self, chain: str) -> dict[tuple[str, str], Decimal]:
        """Get stored balances of a chain keyed by (address, token)."""
        async with get_db(self._session_factory) as session:
            balances = await LedgerRepository(session).get_chain_balances(chain)
            return {(b.address, b.token): b.amount for b in balances}

    async def load_processed_keys(self, chain: str) -> set[tuple[str, str]]:
        """Get every (tx_hash, recipient) pair already accounted for on a chain."""
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_processed_keys(chain)
