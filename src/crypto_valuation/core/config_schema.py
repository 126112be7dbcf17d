"""
Configuration schema and validation for the valuation engine.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

DEFAULT_WALLET_TOKENS = ["ETH", "WETH", "USDC", "USDT"]


class GasConfig(BaseModel):
    """Fixed per-transaction gas estimate by trading mode."""

    test: float = Field(default=0.10, ge=0.0, description="EUR per ledger trade in test mode")
    real: float = Field(default=0.0, ge=0.0, description="EUR per ledger trade in real mode")


class ValuationConfig(BaseModel):
    """Valuation configuration schema."""

    quote_currency: str = Field(default="EUR", description="Quote currency of the price feed")
    gas_per_tx_eur: GasConfig = Field(default_factory=GasConfig)

    @field_validator("quote_currency")
    @classmethod
    def validate_quote_currency(cls, v):
        """Quote currency is an upper-case ticker."""
        v = v.strip().upper()
        if not v.isalnum():
            raise ValueError(f"Invalid quote currency: {v!r}")
        return v


class ReconciliationConfig(BaseModel):
    """Wallet reconciliation configuration schema."""

    materiality_eur: float = Field(
        default=0.01, gt=0.0, le=100.0, description="Smallest drift reported as an anomaly"
    )
    wallet_token_allowlist: list[str] = Field(
        default_factory=lambda: list(DEFAULT_WALLET_TOKENS),
        description="Tokens covered by the on-chain balance snapshot",
    )

    @field_validator("wallet_token_allowlist")
    @classmethod
    def validate_allowlist(cls, v):
        """Normalize tokens and require at least one."""
        tokens = [token.strip().upper() for token in v if token and token.strip()]
        if not tokens:
            raise ValueError("wallet_token_allowlist must name at least one token")
        return tokens


class SourcePollingConfig(BaseModel):
    """Polling limits for one upstream source."""

    min_interval_s: float = Field(default=10.0, ge=0.0, le=3600.0)
    backoff_base_s: float = Field(default=2.0, gt=0.0, le=3600.0)
    max_backoff_s: float = Field(default=120.0, gt=0.0, le=86400.0)

    @model_validator(mode="after")
    def validate_backoff_cap(self):
        """The backoff cap can never be shorter than the regular interval."""
        if self.max_backoff_s < self.min_interval_s:
            raise ValueError(
                f"max_backoff_s ({self.max_backoff_s}) must be >= min_interval_s ({self.min_interval_s})"
            )
        if self.backoff_base_s > self.max_backoff_s:
            raise ValueError(
                f"backoff_base_s ({self.backoff_base_s}) must be <= max_backoff_s ({self.max_backoff_s})"
            )
        return self


class PollingConfig(BaseModel):
    """Polling configuration schema."""

    ledger: SourcePollingConfig = Field(
        default_factory=lambda: SourcePollingConfig(min_interval_s=5.0)
    )
    prices: SourcePollingConfig = Field(
        default_factory=lambda: SourcePollingConfig(min_interval_s=15.0)
    )
    wallet: SourcePollingConfig = Field(
        default_factory=lambda: SourcePollingConfig(min_interval_s=10.0)
    )


class PriceFeedConfig(BaseModel):
    """Ticker price feed configuration schema."""

    base_url: str = Field(default="https://api.exchange.coinbase.com")
    timeout_s: float = Field(default=10.0, ge=1.0, le=120.0)
    max_retries: int = Field(default=3, ge=1, le=10)
    initial_retry_delay_s: float = Field(default=0.5, ge=0.0, le=30.0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v):
        """Only http(s) endpoints are supported."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid price feed URL: {v}")
        return v.rstrip("/")


class LoggingConfig(BaseModel):
    """Logging configuration schema."""

    level: str = Field(default="INFO")
    file: Optional[str] = Field(default=None)
    rotation: str = Field(default="10 MB")
    retention: str = Field(default="1 month")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


class ServerConfig(BaseModel):
    """HTTP server configuration schema."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1, le=65535)


class EngineConfig(BaseModel):
    """Complete engine configuration."""

    valuation: ValuationConfig = Field(default_factory=ValuationConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    price_feed: PriceFeedConfig = Field(default_factory=PriceFeedConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


def validate_config_dict(config: dict[str, Any]) -> EngineConfig:
    """Validate a raw configuration dictionary.

    Args:
        config: Configuration dictionary (e.g. loaded from YAML)

    Returns:
        Validated EngineConfig

    Raises:
        ValueError: With a readable list of every invalid field
    """
    try:
        return EngineConfig.model_validate(config or {})
    except ValidationError as e:
        lines = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            lines.append(f"  {location}: {error['msg']}")
        raise ValueError("Invalid configuration:\n" + "\n".join(lines)) from e
