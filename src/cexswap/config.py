"""Application configuration using pydantic-settings.

Exchange credentials, the custody wallet and per-chain RPC endpoints are
all provided through the environment (or a local .env file).
"""

from functools import lru_cache
from typing import Optional

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
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level when not in debug")

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3000, description="API server port")

    # ======================
    # Exchange
    # ======================
    exchange_api_url: str = Field(
        default="https://api.coinstore.com/api", description="Exchange REST base URL"
    )
    exchange_api_key: str = Field(default="", description="Exchange API key")
    exchange_api_secret: str = Field(default="", description="Exchange API secret")
    exchange_timeout: float = Field(default=30.0, description="Exchange HTTP timeout (seconds)")
    quote_asset: str = Field(default="USDT", description="Intermediate quote asset")
    liquidity_error_codes: str = Field(
        default="",
        description="Comma-separated exchange codes meaning the order size could not be filled",
    )

    # ======================
    # Custody wallet
    # ======================
    withdraw_address: Optional[str] = Field(
        default=None, description="Custody address used as withdrawal destination"
    )
    withdraw_private_key: Optional[str] = Field(
        default=None, description="Signing key for the custody address"
    )

    # ======================
    # Chain RPC Endpoints
    # ======================
    eth_rpc_url: str = Field(default="https://eth.llamarpc.com", description="Ethereum RPC URL")
    bsc_rpc_url: str = Field(
        default="https://bsc-dataseed.binance.org", description="BSC RPC URL"
    )
    polygon_rpc_url: str = Field(default="https://polygon-rpc.com", description="Polygon RPC URL")

    # ======================
    # Pipeline timings (seconds)
    # ======================
    fee_prefund_retry_interval: float = Field(default=15, description="Fee BUY retry interval")
    fee_prefund_timeout: float = Field(default=33 * 60, description="Fee BUY hard deadline")
    withdrawal_settle_delay: float = Field(default=5, description="Delay before first poll")
    withdrawal_max_wait: float = Field(default=180, description="Withdrawal wait budget")
    withdrawal_poll_interval: float = Field(default=10, description="Withdrawal poll interval")
    transfer_retry_interval: float = Field(default=15, description="Transfer retry interval")
    transfer_timeout: float = Field(default=3 * 60 * 60, description="Transfer hard deadline")
    transfer_confirmation_timeout: float = Field(
        default=300, description="Receipt wait per transfer attempt"
    )
    swap_request_timeout: Optional[float] = Field(
        default=None, description="Overall pipeline deadline (None = unbounded)"
    )

    # ======================
    # Token catalogue
    # ======================
    tokens_file: str = Field(default="public/tokens.json", description="Static token list")
    tokens_cache_ttl: float = Field(default=600, description="Token list cache TTL")
    tokens_update_concurrency: int = Field(default=5, description="Enrichment fan-out")
    tokens_update_delay: float = Field(default=0.2, description="Delay after each enrichment call")

    @property
    def liquidity_codes(self) -> frozenset[str]:
        """Parse liquidity error codes into a set of strings."""
        return frozenset(
            code.strip() for code in self.liquidity_error_codes.split(",") if code.strip()
        )

    @property
    def rpc_urls(self) -> dict[int, str]:
        """Default RPC URL per EVM chain id."""
        return {
            1: self.eth_rpc_url,
            56: self.bsc_rpc_url,
            137: self.polygon_rpc_url,
        }

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "exchange": {
                "url": self.exchange_api_url,
                "api_key": "***" if self.exchange_api_key else "(not set)",
                "api_secret": "***" if self.exchange_api_secret else "(not set)",
                "quote_asset": self.quote_asset,
            },
            "custody": {
                "withdraw_address": self.withdraw_address or "(not set)",
                "signing_key": "***" if self.withdraw_private_key else "(not set)",
            },
            "chains": {str(chain_id): url for chain_id, url in self.rpc_urls.items()},
            "timings": {
                "fee_prefund": [self.fee_prefund_retry_interval, self.fee_prefund_timeout],
                "withdrawal_wait": [self.withdrawal_poll_interval, self.withdrawal_max_wait],
                "transfer": [self.transfer_retry_interval, self.transfer_timeout],
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
