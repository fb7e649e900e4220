"""Address directory: which addresses are monitored and who owns them.

Addresses live in the ``wallet_addresses`` table, one per user per chain.
Malformed entries are skipped with a warning and never abort a refresh.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from bip_utils import Base58Decoder
from eth_utils import is_checksum_address, is_hex_address
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from depowatch.chains import get_chain
from depowatch.errors import AddressInvalid, DirectoryUnavailable
from depowatch.ledger.database import get_db
from depowatch.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)

SOLANA_PUBKEY_LENGTH = 32


@dataclass(frozen=True)
class MonitoredAddress:
    """An address being watched for deposits."""

    chain: str
    address: str
    user_id: str
    label: Optional[str] = None


def normalize_address(chain: str, address: str, user_id: Optional[str] = None) -> str:
    """Validate an address and return its canonical form.

    Account-chain addresses are lowercased (after checksum validation);
    Solana addresses keep their base58 casing.

    Raises:
        AddressInvalid: If the address is malformed for the chain
    """
    config = get_chain(chain)
    value = (address or "").strip()

    if config.is_account_chain:
        if not value.startswith("0x") or not is_hex_address(value):
            raise AddressInvalid(config.name, address, user_id)
        # Mixed-case addresses must carry a valid EIP-55 checksum
        body = value[2:]
        if body != body.lower() and body != body.upper() and not is_checksum_address(value):
            raise AddressInvalid(config.name, address, user_id)
        return value.lower()

    try:
        decoded = Base58Decoder.Decode(value)
    except (ValueError, TypeError) as e:
        raise AddressInvalid(config.name, address, user_id) from e
    if not value or len(decoded) != SOLANA_PUBKEY_LENGTH:
        raise AddressInvalid(config.name, address, user_id)
    return value


class AddressDirectory:
    """Resolves the current monitored address set from the ledger database."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    async def resolve(self, chain: str) -> list[MonitoredAddress]:
        """Get the valid monitored addresses of one chain.

        Raises:
            DirectoryUnavailable: If the directory cannot be queried
        """
        name = get_chain(chain).name
        try:
            async with get_db(self._session_factory) as session:
                rows = await LedgerRepository(session).get_wallet_addresses(name)
                entries = [(r.user_id, r.address, r.label) for r in rows]
        except SQLAlchemyError as e:
            raise DirectoryUnavailable(f"Could not load {name} addresses: {e}") from e

        addresses: list[MonitoredAddress] = []
        seen: set[str] = set()
        for user_id, raw_address, label in entries:
            try:
                address = normalize_address(name, raw_address, user_id)
            except AddressInvalid as e:
                logger.warning(f"Skipping address: {e}")
                continue
            if address in seen:
                continue
            seen.add(address)
            addresses.append(MonitoredAddress(name, address, user_id, label))

        logger.debug(f"Resolved {len(addresses)} {name} addresses")
        return addresses

    async def resolve_all(self, chains: Iterable[str]) -> dict[str, list[MonitoredAddress]]:
        """Resolve several chains at once."""
        return {get_chain(c).name: await self.resolve(c) for c in chains}

    async def register(
        self,
        user_id: str,
        chain: str,
        address: str,
        label: Optional[str] = None,
    ) -> MonitoredAddress:
        """Add or replace a user's address on a chain.

        Raises:
            AddressInvalid: If the address is malformed for the chain
            DirectoryUnavailable: If the directory cannot be written
        """
        name = get_chain(chain).name
        normalized = normalize_address(name, address, user_id)
        try:
            async with get_db(self._session_factory) as session:
                await LedgerRepository(session).upsert_wallet_address(
                    user_id, name, normalized, label
                )
        except SQLAlchemyError as e:
            raise DirectoryUnavailable(f"Could not register {name} address: {e}") from e

        logger.info(f"Registered {name} address {normalized} for user {user_id}")
        return MonitoredAddress(name, normalized, user_id, label)
