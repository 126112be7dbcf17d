"""
Domain types for ledger valuation.

Trades are recorded facts and never change for accounting purposes; the
other types here are derived views rebuilt on every valuation request.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..core.exceptions import MalformedInputError
from ..core.utils import is_usable_price, require_finite


class TradeSide(str, Enum):
    """Executed order side."""

    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: Any) -> "TradeSide":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise MalformedInputError(f"Invalid trade side: {value!r}", field="side", value=value) from e


class TradingMode(str, Enum):
    """Ledger partition: simulated (test) or real money."""

    TEST = "test"
    REAL = "real"

    @property
    def is_test(self) -> bool:
        return self is TradingMode.TEST

    @classmethod
    def from_flag(cls, is_test_mode: bool) -> "TradingMode":
        return cls.TEST if is_test_mode else cls.REAL

    @classmethod
    def parse(cls, value: Any) -> "TradingMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise MalformedInputError(f"Invalid trading mode: {value!r}", field="mode", value=value) from e


@dataclass(frozen=True)
class Trade:
    """An executed order as recorded in the ledger."""

    symbol: str
    side: TradeSide
    amount: float
    total_value: float
    fees: float
    executed_at: datetime
    is_test_mode: bool
    is_corrupted: bool = False
    trade_id: Optional[str] = None

    @property
    def mode(self) -> TradingMode:
        return TradingMode.from_flag(self.is_test_mode)

    @property
    def cost(self) -> float:
        """Quote-currency outlay of the trade including fees."""
        return self.total_value + self.fees

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trade":
        """Build a trade from a ledger row.

        Accepts both the ledger column names (`cryptocurrency`,
        `trade_type`, `total_value`, `executed_at`, `is_test_mode`) and the
        attribute names of this class.
        """
        try:
            symbol = data.get("symbol", data.get("cryptocurrency"))
            side = data.get("side", data.get("trade_type"))
            executed_at = data["executed_at"]
            is_test_mode = data["is_test_mode"]
        except KeyError as e:
            raise MalformedInputError(f"Trade row missing field {e.args[0]!r}", field=e.args[0]) from e

        if not symbol or not isinstance(symbol, str):
            raise MalformedInputError(f"Trade row has no symbol: {data!r}", field="symbol")
        if not isinstance(is_test_mode, bool):
            raise MalformedInputError(
                f"is_test_mode must be a boolean, got {is_test_mode!r}",
                field="is_test_mode",
                value=is_test_mode,
            )
        if isinstance(executed_at, str):
            try:
                executed_at = datetime.fromisoformat(executed_at.replace("Z", "+00:00"))
            except ValueError as e:
                raise MalformedInputError(
                    f"Invalid executed_at: {executed_at!r}", field="executed_at", value=executed_at
                ) from e
        elif not isinstance(executed_at, datetime):
            raise MalformedInputError(
                f"Invalid executed_at: {executed_at!r}", field="executed_at", value=executed_at
            )

        return cls(
            symbol=symbol,
            side=TradeSide.parse(side),
            amount=require_finite(data.get("amount"), "amount"),
            total_value=require_finite(data.get("total_value"), "total_value"),
            fees=require_finite(data.get("fees", 0.0) or 0.0, "fees"),
            executed_at=executed_at,
            is_test_mode=is_test_mode,
            is_corrupted=bool(data.get("is_corrupted", False)),
            trade_id=data.get("trade_id", data.get("id")),
        )


@dataclass(frozen=True)
class PositionAggregate:
    """Open exposure in one base asset."""

    symbol: str
    total_amount: float
    total_cost_basis: float
    trade_count: int = 0

    @property
    def average_entry_price(self) -> Optional[float]:
        """Weighted-average entry price including fees."""
        if self.total_amount <= 0:
            return None
        return self.total_cost_basis / self.total_amount


@dataclass(frozen=True)
class PriceQuote:
    """A price observation for one symbol."""

    symbol: str
    price: float
    as_of: Optional[datetime] = None

    @property
    def is_usable(self) -> bool:
        """Only finite, strictly positive prices count as a quote."""
        return is_usable_price(self.price)


@dataclass(frozen=True)
class PositionValue:
    """Per-position line of a valuation."""

    symbol: str
    amount: float
    cost_basis: float
    live_price: Optional[float] = None
    live_value: Optional[float] = None
    unrealized_pnl: Optional[float] = None
    unrealized_pnl_pct: Optional[float] = None
    matched_key: Optional[str] = None

    @property
    def is_priced(self) -> bool:
        return self.live_price is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "amount": self.amount,
            "cost_basis": self.cost_basis,
            "live_price": self.live_price,
            "live_value": self.live_value,
            "unrealized_pnl": self.unrealized_pnl,
            "unrealized_pnl_pct": self.unrealized_pnl_pct,
            "matched_key": self.matched_key,
        }


@dataclass(frozen=True)
class ValuationSnapshot:
    """Point-in-time statement of portfolio value.

    `total_portfolio_value_eur` is always
    `cash_eur + unrealized_pnl_eur - gas_spent_eur`.
    """

    cash_eur: float
    open_positions_value_eur: float
    unrealized_pnl_eur: float
    gas_spent_eur: float
    total_portfolio_value_eur: float
    missing_symbols: list[str] = field(default_factory=list)
    positions: list[PositionValue] = field(default_factory=list)
    cost_basis_eur: float = 0.0
    priced_cost_basis_eur: float = 0.0
    tx_count: int = 0
    starting_capital_eur: Optional[float] = None
    total_pnl_eur: Optional[float] = None
    total_pnl_pct: Optional[float] = None
    mode: Optional[TradingMode] = None
    as_of: Optional[datetime] = None
    prices_as_of: Optional[datetime] = None
    is_stale: bool = False

    @property
    def has_missing_prices(self) -> bool:
        return len(self.missing_symbols) > 0

    @property
    def priced_positions(self) -> int:
        return sum(1 for position in self.positions if position.is_priced)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cash_eur": self.cash_eur,
            "open_positions_value_eur": self.open_positions_value_eur,
            "unrealized_pnl_eur": self.unrealized_pnl_eur,
            "gas_spent_eur": self.gas_spent_eur,
            "total_portfolio_value_eur": self.total_portfolio_value_eur,
            "missing_symbols": list(self.missing_symbols),
            "has_missing_prices": self.has_missing_prices,
            "cost_basis_eur": self.cost_basis_eur,
            "priced_cost_basis_eur": self.priced_cost_basis_eur,
            "tx_count": self.tx_count,
            "starting_capital_eur": self.starting_capital_eur,
            "total_pnl_eur": self.total_pnl_eur,
            "total_pnl_pct": self.total_pnl_pct,
            "mode": self.mode.value if self.mode else None,
            "as_of": self.as_of.isoformat() if self.as_of else None,
            "prices_as_of": self.prices_as_of.isoformat() if self.prices_as_of else None,
            "is_stale": self.is_stale,
            "positions": [position.to_dict() for position in self.positions],
        }
