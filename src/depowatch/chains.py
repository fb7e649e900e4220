"""Chain catalogue for the deposit watcher.

Three chains are monitored:
- Ethereum and BNB Smart Chain (account chains, block scanning)
- Solana (slot-based chain, signature scanning)

Each chain lists its native token and a fixed allow-list of popular tokens
whose balances are snapshotted on every batch pass.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

ACCOUNT_FAMILY = "account"
SLOT_FAMILY = "slot"


@dataclass(frozen=True)
class TokenConfig:
    """A token tracked by the snapshot engine."""

    symbol: str
    address: str  # ERC-20 contract or SPL mint
    decimals: int


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a monitored blockchain."""

    name: str
    display_name: str
    family: str
    native_symbol: str
    native_decimals: int
    tokens: tuple[TokenConfig, ...] = field(default_factory=tuple)

    @property
    def is_account_chain(self) -> bool:
        return self.family == ACCOUNT_FAMILY

    def find_token(self, address: str) -> Optional[TokenConfig]:
        """Look up an allow-listed token by contract/mint address."""
        for token in self.tokens:
            if self.is_account_chain:
                if token.address.lower() == address.lower():
                    return token
            elif token.address == address:
                return token
        return None


# ======================
# Chain Configurations
# ======================

CHAINS: dict[str, ChainConfig] = {
    "ethereum": ChainConfig(
        name="ethereum",
        display_name="Ethereum",
        family=ACCOUNT_FAMILY,
        native_symbol="ETH",
        native_decimals=18,
        tokens=(
            TokenConfig("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
            TokenConfig("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
            TokenConfig("DAI", "0x6B175474E89094C44Da98b954EedeAC495271d0F", 18),
            TokenConfig("WBTC", "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", 8),
            TokenConfig("WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18),
        ),
    ),
    "bsc": ChainConfig(
        name="bsc",
        display_name="BSC",
        family=ACCOUNT_FAMILY,
        native_symbol="BNB",
        native_decimals=18,
        tokens=(
            TokenConfig("USDT", "0x55d398326f99059fF775485246999027B3197955", 18),
            TokenConfig("USDC", "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18),
            TokenConfig("DAI", "0x1AF3F329e8BE154074D8769D1FFa4eE058B1DBc3", 18),
            TokenConfig("WBNB", "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c", 18),
            TokenConfig("BTCB", "0x7130d2A12B9BCbFAe4f2634d864A1Ee1Ce3Ead9c", 18),
        ),
    ),
    "solana": ChainConfig(
        name="solana",
        display_name="Solana",
        family=SLOT_FAMILY,
        native_symbol="SOL",
        native_decimals=9,
        tokens=(
            TokenConfig("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
            TokenConfig("USDT", "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6),
            TokenConfig("WSOL", "So11111111111111111111111111111111111111112", 9),
            TokenConfig("MSOL", "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So", 9),
            TokenConfig("STSOL", "7dHbWXmci3dT8UFYWYZweBLXgycu7Y3iL6trKn1Y7ARj", 9),
        ),
    ),
}

# CLI aliases -> canonical chain names
CHAIN_ALIASES: dict[str, str] = {
    "ethereum": "ethereum",
    "eth": "ethereum",
    "bsc": "bsc",
    "binance": "bsc",
    "bnb": "bsc",
    "solana": "solana",
    "sol": "solana",
}

ALL_CHAINS = "all"


# ======================
# Helper Functions
# ======================

def get_chain(name: str) -> ChainConfig:
    """Get chain configuration by canonical name or alias.

    Raises:
        KeyError: If the chain is unknown
    """
    return CHAINS[CHAIN_ALIASES[name.strip().lower()]]


def get_account_chains() -> list[ChainConfig]:
    """Get the account-model chains (block scanning)."""
    return [c for c in CHAINS.values() if c.is_account_chain]


def canonical_symbol(symbol: str) -> str:
    """Normalise a token symbol to its canonical balance-map key."""
    return symbol.strip().upper()


def to_decimal(raw: int, decimals: int) -> Decimal:
    """Convert an integer amount in base units to a Decimal."""
    if raw == 0:
        return Decimal("0")
    return Decimal(raw) / Decimal(10**decimals)


def parse_chain_selection(value: str | Iterable[str]) -> list[str]:
    """Parse a comma-separated chain selection into canonical chain names.

    Names are case-insensitive, aliases are resolved and ``all`` expands to
    every chain. Order of first appearance is kept and duplicates removed.

    Raises:
        ValueError: If any name is not a known chain or alias
    """
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value)

    names = [p.strip().lower() for p in parts if p and p.strip()]
    if not names:
        raise ValueError("No chains specified")

    invalid = [n for n in names if n != ALL_CHAINS and n not in CHAIN_ALIASES]
    if invalid:
        valid = ", ".join(sorted(CHAIN_ALIASES) + [ALL_CHAINS])
        raise ValueError(
            f"Invalid chain(s) specified: {', '.join(invalid)}. Valid options are: {valid}"
        )

    selected: list[str] = []
    for name in names:
        expanded = list(CHAINS) if name == ALL_CHAINS else [CHAIN_ALIASES[name]]
        for chain in expanded:
            if chain not in selected:
                selected.append(chain)
    return selected
