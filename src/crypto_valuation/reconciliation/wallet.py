"""
On-chain wallet balance snapshots.

The wallet balance source returns a payload per execution wallet covering a
fixed token set. The payload is validated here and turned into an immutable
WalletBalanceSnapshot; nothing in this package ever writes to a wallet.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.exceptions import MalformedInputError


def _finite(value: float, name: str) -> float:
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite")
    return value


class TokenBalancePayload(BaseModel):
    """One token entry of the wallet balance payload."""

    model_config = ConfigDict(extra="ignore")

    symbol: str
    amount: float = Field(ge=0.0)
    value_eur: float = Field(ge=0.0)
    value_usd: Optional[float] = Field(default=None, ge=0.0)
    price_usd: Optional[float] = Field(default=None, ge=0.0)

    @field_validator("amount", "value_eur", "value_usd", "price_usd")
    @classmethod
    def validate_finite(cls, v, info):
        if v is None:
            return v
        return _finite(v, info.field_name)


class WalletBalancePayload(BaseModel):
    """Response shape of the wallet balance source."""

    model_config = ConfigDict(extra="ignore")

    address: str
    chain_id: Optional[int] = None
    balances: dict[str, TokenBalancePayload]
    total_value_eur: float = Field(ge=0.0)
    total_value_usd: Optional[float] = Field(default=None, ge=0.0)
    is_funded: Optional[bool] = None
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None

    @field_validator("total_value_eur", "total_value_usd")
    @classmethod
    def validate_finite(cls, v, info):
        if v is None:
            return v
        return _finite(v, info.field_name)


@dataclass(frozen=True)
class WalletTokenBalance:
    """Balance of one token held by the wallet."""

    symbol: str
    amount: float
    value_eur: float
    value_usd: Optional[float] = None
    price_usd: Optional[float] = None


@dataclass(frozen=True)
class WalletBalanceSnapshot:
    """Read-only view of an execution wallet's on-chain holdings."""

    address: str
    tokens: dict[str, WalletTokenBalance]
    total_value_eur: float
    fetched_at: datetime
    chain_id: Optional[int] = None
    total_value_usd: Optional[float] = None
    is_funded: Optional[bool] = None
    covered_tokens: tuple[str, ...] = field(default_factory=tuple)

    @property
    def token_symbols(self) -> list[str]:
        return sorted(self.tokens)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "chain_id": self.chain_id,
            "total_value_eur": self.total_value_eur,
            "total_value_usd": self.total_value_usd,
            "is_funded": self.is_funded,
            "fetched_at": self.fetched_at.isoformat(),
            "tokens": {
                symbol: {
                    "amount": token.amount,
                    "value_eur": token.value_eur,
                    "value_usd": token.value_usd,
                }
                for symbol, token in sorted(self.tokens.items())
            },
        }


def parse_wallet_balance(
    payload: Any,
    covered_tokens: tuple[str, ...] = (),
    received_at: Optional[datetime] = None,
) -> WalletBalanceSnapshot:
    """Validate a wallet balance payload.

    Args:
        payload: Raw response from the wallet balance source
        covered_tokens: Token allow-list the source queries
        received_at: Fallback timestamp when the payload carries none

    Returns:
        WalletBalanceSnapshot

    Raises:
        MalformedInputError: If the payload reports an error or fails validation
    """
    if isinstance(payload, WalletBalanceSnapshot):
        return payload
    if not isinstance(payload, dict):
        raise MalformedInputError(
            f"Wallet balance payload must be an object, got {type(payload).__name__}",
            field="wallet_balance",
            value=payload,
        )
    if payload.get("error"):
        raise MalformedInputError(
            f"Wallet balance source reported an error: {payload['error']}",
            field="wallet_balance",
            value=payload,
        )
    try:
        parsed = WalletBalancePayload.model_validate(payload)
    except ValidationError as e:
        raise MalformedInputError(
            f"Invalid wallet balance payload: {e}", field="wallet_balance", value=payload
        ) from e

    tokens = {}
    for key, entry in parsed.balances.items():
        symbol = (entry.symbol or key).strip().upper()
        tokens[symbol] = WalletTokenBalance(
            symbol=symbol,
            amount=entry.amount,
            value_eur=entry.value_eur,
            value_usd=entry.value_usd,
            price_usd=entry.price_usd,
        )

    fetched_at = parsed.fetched_at or received_at or datetime.now(timezone.utc)
    return WalletBalanceSnapshot(
        address=parsed.address,
        tokens=tokens,
        total_value_eur=parsed.total_value_eur,
        fetched_at=fetched_at,
        chain_id=parsed.chain_id,
        total_value_usd=parsed.total_value_usd,
        is_funded=parsed.is_funded,
        covered_tokens=tuple(token.upper() for token in covered_tokens),
    )
