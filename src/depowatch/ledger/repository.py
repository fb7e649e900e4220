"""Repository for ledger operations."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from depowatch.errors import LedgerWriteConflict
from depowatch.ledger.models import (
    Balance,
    ChainCursor,
    Deposit,
    DetectionMethod,
    ProcessedStatus,
    ProcessedTransaction,
    WalletAddress,
    utcnow,
)


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Address directory operations
    async def get_wallet_addresses(self, chain: Optional[str] = None) -> list[WalletAddress]:
        """Get monitored addresses, optionally for one chain."""
        stmt = select(WalletAddress).order_by(WalletAddress.id)
        if chain:
            stmt = stmt.where(WalletAddress.chain == chain)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_wallet_address(
        self,
        user_id: str,
        chain: str,
        address: str,
        label: Optional[str] = None,
    ) -> WalletAddress:
        """Create or replace the address a user has on a chain."""
        stmt = select(WalletAddress).where(
            WalletAddress.user_id == user_id, WalletAddress.chain == chain
        )
        result = await self.session.execute(stmt)
        wallet = result.scalar_one_or_none()

        if wallet is None:
            wallet = WalletAddress(user_id=user_id, chain=chain, address=address, label=label)
            self.session.add(wallet)
        else:
            wallet.address = address
            wallet.label = label
        await self.session.flush()
        return wallet

    # Cursor operations
    async def get_cursor(self, chain: str) -> Optional[ChainCursor]:
        """Get the scanner cursor for a chain."""
        stmt = select(ChainCursor).where(ChainCursor.chain == chain)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def save_cursor(
        self, chain: str, height: int, origin_height: Optional[int] = None
    ) -> ChainCursor:
        """Store a cursor height. The stored height never decreases."""
        cursor = await self.get_cursor(chain)
        if cursor is None:
            cursor = ChainCursor(
                chain=chain,
                height=height,
                origin_height=height if origin_height is None else origin_height,
            )
            self.session.add(cursor)
        else:
            cursor.height = max(cursor.height, height)
            if origin_height is not None and not cursor.origin_height:
                cursor.origin_height = origin_height
        await self.session.flush()
        return cursor

    # Balance operations
    async def get_balance(self, chain: str, address: str, token: str) -> Optional[Balance]:
        """Get the stored balance of one wallet token."""
        stmt = select(Balance).where(
            Balance.chain == chain,
            Balance.address == address,
            Balance.token == token,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_chain_balances(self, chain: str) -> list[Balance]:
        """Get every stored balance on a chain."""
        stmt = select(Balance).where(Balance.chain == chain).order_by(Balance.address, Balance.token)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_balance(
        self,
        user_id: str,
        chain: str,
        address: str,
        token: str,
        amount: Decimal,
    ) -> Balance:
        """Set the stored balance, creating the row if needed."""
        balance = await self.get_balance(chain, address, token)
        if balance is None:
            balance = Balance(
                user_id=user_id, chain=chain, address=address, token=token, amount=amount
            )
            self.session.add(balance)
        else:
            balance.amount = amount
            balance.user_id = user_id
            balance.captured_at = utcnow()
        await self.session.flush()
        return balance

    # Deposit operations
    async def create_deposit(
        self,
        user_id: str,
        chain: str,
        wallet_address: str,
        token: str,
        amount: Decimal,
        previous_balance: Decimal,
        new_balance: Decimal,
        detection_method: DetectionMethod,
        tx_hash: Optional[str] = None,
        counterparty_address: Optional[str] = None,
        block_height: Optional[int] = None,
        detected_at: Optional[datetime] = None,
    ) -> Deposit:
        """Append a deposit record."""
        deposit = Deposit(
            user_id=user_id,
            chain=chain,
            wallet_address=wallet_address,
            counterparty_address=counterparty_address,
            token=token,
            amount=amount,
            previous_balance=previous_balance,
            new_balance=new_balance,
            tx_hash=tx_hash,
            detection_method=detection_method.value,
            block_height=block_height,
            detected_at=detected_at or utcnow(),
        )
        self.session.add(deposit)
        await self.session.flush()
        return deposit

    async def get_deposits(
        self,
        chain: Optional[str] = None,
        wallet_address: Optional[str] = None,
        limit: int = 100,
    ) -> list[Deposit]:
        """Get recent deposits, newest first."""
        stmt = select(Deposit).order_by(Deposit.id.desc()).limit(limit)
        if chain:
            stmt = stmt.where(Deposit.chain == chain)
        if wallet_address:
            stmt = stmt.where(Deposit.wallet_address == wallet_address)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_reconcilable_deposit(
        self,
        chain: str,
        wallet_address: str,
        token: str,
        amount: Decimal,
        tolerance: Decimal,
        since: datetime,
    ) -> Optional[Deposit]:
        """Find a recent balance-diff deposit matching an amount that no hash accounts for."""
        linked = select(ProcessedTransaction.deposit_id).where(
            ProcessedTransaction.deposit_id.is_not(None)
        )
        stmt = (
            select(Deposit)
            .where(
                Deposit.chain == chain,
                Deposit.wallet_address == wallet_address,
                Deposit.token == token,
                Deposit.detection_method == DetectionMethod.BALANCE_DIFF.value,
                Deposit.tx_hash.is_(None),
                Deposit.detected_at >= since,
                Deposit.id.not_in(linked),
            )
            .order_by(Deposit.detected_at.desc())
        )
        result = await self.session.execute(stmt)
        for deposit in result.scalars().all():
            if abs(deposit.amount - amount) <= tolerance:
                return deposit
        return None

    # Processed transaction tracking (idempotency)
    async def is_transaction_processed(
        self, chain: str, tx_hash: str, to_address: str, token: str
    ) -> bool:
        """Check if a transaction was already processed for one recipient and token."""
        processed = await self.get_processed_transaction(chain, tx_hash, to_address, token)
        return processed is not None

    async def get_processed_transaction(
        self, chain: str, tx_hash: str, to_address: str, token: str
    ) -> Optional[ProcessedTransaction]:
        """Get the processed record of a transaction for one recipient and token."""
        stmt = select(ProcessedTransaction).where(
            ProcessedTransaction.chain == chain,
            ProcessedTransaction.tx_hash == tx_hash,
            ProcessedTransaction.to_address == to_address,
            ProcessedTransaction.token == token,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_transaction_processed(
        self,
        chain: str,
        tx_hash: str,
        amount: Decimal,
        to_address: str,
        token: str,
        status: ProcessedStatus = ProcessedStatus.RECORDED,
        deposit_id: Optional[int] = None,
    ) -> ProcessedTransaction:
        """Mark a transaction as processed for one recipient and token.

        Raises:
            LedgerWriteConflict: If the hash is already recorded for that recipient and token
        """
        processed = ProcessedTransaction(
            chain=chain,
            tx_hash=tx_hash,
            status=status.value,
            amount=amount,
            to_address=to_address,
            token=token,
            deposit_id=deposit_id,
        )
        self.session.add(processed)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise LedgerWriteConflict(chain, tx_hash) from e
        return processed

    async def get_processed_keys(self, chain: str) -> set[tuple[str, str]]:
        """Get every processed (tx_hash, to_address) pair of a chain."""
        stmt = select(ProcessedTransaction.tx_hash, ProcessedTransaction.to_address).where(
            ProcessedTransaction.chain == chain
        )
        result = await self.session.execute(stmt)
        return {(tx_hash, to_address) for tx_hash, to_address in result.all()}
