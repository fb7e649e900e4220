"""Application configuration using pydantic-settings.

Every knob of the deposit watcher (RPC endpoints, retry policy, thresholds,
batch sizes, schedules) is read from environment variables or a ``.env`` file.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/depowatch.db",
        description="Ledger database connection URL",
    )

    # ======================
    # Chain RPC Endpoints
    # ======================
    ethereum_rpc_url: str = Field(
        default="https://eth.llamarpc.com", description="Ethereum primary RPC URL"
    )
    ethereum_fallback_rpc_urls: str = Field(
        default="", description="Comma-separated Ethereum fallback RPC URLs"
    )
    bsc_rpc_url: str = Field(
        default="https://bsc-dataseed.binance.org", description="BSC primary RPC URL"
    )
    bsc_fallback_rpc_urls: str = Field(
        default="", description="Comma-separated BSC fallback RPC URLs"
    )
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana primary RPC URL"
    )
    solana_fallback_rpc_urls: str = Field(
        default="", description="Comma-separated Solana fallback RPC URLs"
    )

    # ======================
    # Failover
    # ======================
    rpc_timeout: float = Field(default=15.0, description="Per-request RPC timeout (seconds)")
    max_retries: int = Field(default=5, description="Attempts before a chain is declared exhausted")
    retry_delay: float = Field(default=5.0, description="Fixed delay between attempts (seconds)")

    # ======================
    # Detection
    # ======================
    min_deposit_value: Decimal = Field(
        default=Decimal("0.000001"), description="Dust filter for transaction deposits"
    )
    noise_threshold: Decimal = Field(
        default=Decimal("0.000001"), description="Absolute epsilon for balance-diff deposits"
    )
    signature_limit: int = Field(
        default=10, description="Recent Solana signatures fetched per address"
    )
    reconciliation_window: int = Field(
        default=900,
        description="Seconds a balance-diff deposit can absorb a matching transaction",
    )

    # ======================
    # Scheduling
    # ======================
    polling_interval: int = Field(default=15, description="Real-time monitor interval (seconds)")
    directory_refresh_interval: int = Field(
        default=300, description="Address directory refresh interval (seconds)"
    )
    scan_interval: int = Field(default=600, description="Timer-driven batch pass interval (seconds)")
    batch_size: int = Field(default=10, description="Addresses per snapshot batch")
    max_workers: int = Field(default=5, description="Concurrent address fetches inside a batch")

    # ======================
    # Local artifact
    # ======================
    snapshot_file: str = Field(
        default="./data/balance_snapshot.json", description="Last completed pass report"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_rpc_urls(self, chain: str) -> list[str]:
        """Get the ordered endpoint list (primary first) for a chain."""
        url_map = {
            "ethereum": (self.ethereum_rpc_url, self.ethereum_fallback_rpc_urls),
            "bsc": (self.bsc_rpc_url, self.bsc_fallback_rpc_urls),
            "solana": (self.solana_rpc_url, self.solana_fallback_rpc_urls),
        }
        primary, fallbacks = url_map.get(chain.lower(), ("", ""))
        urls = [primary] if primary else []
        for url in fallbacks.split(","):
            url = url.strip()
            if url and url not in urls:
                urls.append(url)
        return urls

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "chains": {
                chain: [self._redact_url(url) for url in self.get_rpc_urls(chain)]
                for chain in ("ethereum", "bsc", "solana")
            },
            "failover": {
                "max_retries": self.max_retries,
                "retry_delay": self.retry_delay,
                "timeout": self.rpc_timeout,
            },
            "detection": {
                "min_deposit_value": str(self.min_deposit_value),
                "noise_threshold": str(self.noise_threshold),
                "reconciliation_window": self.reconciliation_window,
            },
            "batch_size": self.batch_size,
            "max_workers": self.max_workers,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials and API keys embedded in a URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        if "api-key=" in url:
            return url.split("api-key=", 1)[0] + "api-key=***"
        # Infura / QuickNode style: key is the last path segment
        if "/v3/" in url:
            return url.split("/v3/", 1)[0] + "/v3/***"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
