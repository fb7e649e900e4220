"""Persisted scanner cursors."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depowatch.ledger.database import get_db
from depowatch.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CursorState:
    chain: str
    height: int
    origin_height: int


class CursorStore:
    """Reads and advances the per-chain cursors in the ledger database."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    async def get(self, chain: str) -> Optional[CursorState]:
        """Get the cursor of a chain, or None if it was never initialized."""
        async with get_db(self._session_factory) as session:
            cursor = await LedgerRepository(session).get_cursor(chain)
            if cursor is None or not cursor.height:
                return None
            return CursorState(chain, cursor.height, cursor.origin_height)

    async def initialize(self, chain: str, height: int) -> CursorState:
        """Start a chain at the current height without backfilling."""
        async with get_db(self._session_factory) as session:
            cursor = await LedgerRepository(session).save_cursor(chain, height, origin_height=height)
            logger.info(f"Initialized {chain} cursor at {cursor.height}")
            return CursorState(chain, cursor.height, cursor.origin_height)

    async def advance(self, chain: str, height: int) -> int:
        """Move the cursor forward. Returns the stored height."""
        async with get_db(self._session_factory) as session:
            cursor = await LedgerRepository(session).save_cursor(chain, height)
            return cursor.height
