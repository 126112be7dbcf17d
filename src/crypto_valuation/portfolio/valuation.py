"""
Portfolio valuation.

Combines cash, open position aggregates, a frozen price map and the gas
estimate into a single ValuationSnapshot. The authoritative total is

    total_portfolio_value_eur = cash_eur + unrealized_pnl_eur - gas_spent_eur

Positions without a usable price are listed in `missing_symbols` and
excluded from both the position value and the unrealized P&L, so a
partially priced portfolio never mixes priced and unpriced cost bases.
"""

import math
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional, Union

from ..core.exceptions import MalformedInputError
from ..core.logging_utils import LoggerMixin, event_message
from ..core.symbols import DEFAULT_QUOTE
from ..core.utils import require_finite, require_non_negative, safe_pct
from .models import PositionAggregate, PositionValue, TradingMode, ValuationSnapshot
from .pricing import PriceBook, PriceResolver

PNL_EPSILON_EUR = 0.01


def compute_gas_spent_eur(tx_count: int, gas_per_tx_eur: float) -> float:
    """Fixed per-transaction gas estimate: every ledger trade is one transaction."""
    if isinstance(tx_count, bool) or not isinstance(tx_count, int):
        raise MalformedInputError(
            f"gas_tx_count must be an integer, got {tx_count!r}", field="gas_tx_count", value=tx_count
        )
    if tx_count < 0:
        raise MalformedInputError(
            f"gas_tx_count must be >= 0, got {tx_count}", field="gas_tx_count", value=tx_count
        )
    return tx_count * require_non_negative(gas_per_tx_eur, "gas_per_tx_eur")


def compute_total_portfolio_value_eur(
    cash_eur: float, unrealized_pnl_eur: float, gas_spent_eur: float
) -> float:
    return cash_eur + unrealized_pnl_eur - gas_spent_eur


def compute_total_pnl(
    total_portfolio_value_eur: float, starting_capital_eur: float
) -> tuple[float, float]:
    """Gain since the starting capital was deposited, in EUR and percent."""
    pnl_eur = total_portfolio_value_eur - starting_capital_eur
    pnl_pct = pnl_eur / starting_capital_eur * 100 if starting_capital_eur > 0 else 0.0
    return pnl_eur, pnl_pct


def format_pnl_with_sign(pnl_eur: float) -> dict[str, str]:
    """Render a P&L figure with an explicit sign and a profit/loss label."""
    if abs(pnl_eur) < PNL_EPSILON_EUR:
        return {"sign": "", "value": "€0.00", "label": "Break-even"}
    if pnl_eur > 0:
        return {"sign": "+", "value": f"€{pnl_eur:.2f}", "label": "Profit"}
    return {"sign": "-", "value": f"€{abs(pnl_eur):.2f}", "label": "Loss"}


def _validate_aggregate(key: str, aggregate: PositionAggregate) -> None:
    require_non_negative(aggregate.total_amount, f"total_amount[{key}]")
    require_non_negative(aggregate.total_cost_basis, f"total_cost_basis[{key}]")


class ValuationCalculator(LoggerMixin):
    """Computes ValuationSnapshot values from already-fetched inputs."""

    def __init__(self, resolver: Optional[PriceResolver] = None, quote_currency: str = DEFAULT_QUOTE):
        self.resolver = resolver or PriceResolver(quote_currency)

    def compute_valuation(
        self,
        cash_eur: float,
        aggregates: Mapping[str, PositionAggregate],
        prices: Union[PriceBook, Mapping[str, Any], None],
        gas_tx_count: int,
        gas_per_tx_eur: float,
        *,
        starting_capital_eur: Optional[float] = None,
        mode: Optional[TradingMode] = None,
        as_of: Optional[datetime] = None,
        prices_as_of: Optional[datetime] = None,
        is_stale: bool = False,
    ) -> ValuationSnapshot:
        """Value a portfolio.

        Args:
            cash_eur: Ledger cash balance
            aggregates: Open positions keyed by base symbol
            prices: Symbol -> price map (pair or base keys)
            gas_tx_count: Number of ledger-recorded trades
            gas_per_tx_eur: Fixed gas estimate per trade
            starting_capital_eur: Deposited capital, enables total P&L
            mode: Ledger mode the inputs belong to
            as_of: Timestamp of the ledger data
            prices_as_of: Timestamp of the price data
            is_stale: True when either input is a fallback snapshot

        Returns:
            ValuationSnapshot; partial when some prices are missing

        Raises:
            MalformedInputError: On negative amounts or non-finite numbers
        """
        cash = require_finite(cash_eur, "cash_eur")
        gas_spent = compute_gas_spent_eur(gas_tx_count, gas_per_tx_eur)
        if starting_capital_eur is not None:
            starting_capital_eur = require_finite(starting_capital_eur, "starting_capital_eur")

        book = prices if isinstance(prices, PriceBook) else PriceBook.from_mapping(prices)

        positions: list[PositionValue] = []
        missing_symbols: list[str] = []
        live_values: list[float] = []
        priced_costs: list[float] = []
        all_costs: list[float] = []

        for key in sorted(aggregates):
            aggregate = aggregates[key]
            _validate_aggregate(key, aggregate)
            if aggregate.total_amount <= 0:
                continue

            symbol = aggregate.symbol or key
            all_costs.append(aggregate.total_cost_basis)
            resolved = self.resolver.resolve_detailed(symbol, book)

            if not resolved.found:
                if symbol not in missing_symbols:
                    missing_symbols.append(symbol)
                positions.append(
                    PositionValue(
                        symbol=symbol,
                        amount=aggregate.total_amount,
                        cost_basis=aggregate.total_cost_basis,
                    )
                )
                continue

            live_value = aggregate.total_amount * resolved.price
            pnl = live_value - aggregate.total_cost_basis
            live_values.append(live_value)
            priced_costs.append(aggregate.total_cost_basis)
            positions.append(
                PositionValue(
                    symbol=symbol,
                    amount=aggregate.total_amount,
                    cost_basis=aggregate.total_cost_basis,
                    live_price=resolved.price,
                    live_value=live_value,
                    unrealized_pnl=pnl,
                    unrealized_pnl_pct=safe_pct(pnl, aggregate.total_cost_basis),
                    matched_key=resolved.matched_key,
                )
            )

        open_positions_value = math.fsum(live_values)
        priced_cost_basis = math.fsum(priced_costs)
        unrealized_pnl = open_positions_value - priced_cost_basis
        total = compute_total_portfolio_value_eur(cash, unrealized_pnl, gas_spent)
        require_finite(total, "total_portfolio_value_eur")

        total_pnl_eur = total_pnl_pct = None
        if starting_capital_eur is not None:
            total_pnl_eur, total_pnl_pct = compute_total_pnl(total, starting_capital_eur)

        snapshot = ValuationSnapshot(
            cash_eur=cash,
            open_positions_value_eur=open_positions_value,
            unrealized_pnl_eur=unrealized_pnl,
            gas_spent_eur=gas_spent,
            total_portfolio_value_eur=total,
            missing_symbols=missing_symbols,
            positions=positions,
            cost_basis_eur=math.fsum(all_costs),
            priced_cost_basis_eur=priced_cost_basis,
            tx_count=gas_tx_count,
            starting_capital_eur=starting_capital_eur,
            total_pnl_eur=total_pnl_eur,
            total_pnl_pct=total_pnl_pct,
            mode=mode,
            as_of=as_of,
            prices_as_of=prices_as_of or book.ts,
            is_stale=is_stale,
        )

        self.logger.info(
            event_message(
                "VALUATION_COMPUTED",
                mode=mode.value if mode else None,
                cash=f"{cash:.2f}",
                unrealized_pnl=f"{unrealized_pnl:.2f}",
                gas=f"{gas_spent:.2f}",
                total=f"{total:.2f}",
                positions=len(positions),
                priced=snapshot.priced_positions,
                book=book.id,
            )
        )
        if snapshot.has_missing_prices:
            self.logger.warning(
                event_message("VALUATION_PARTIAL", missing=",".join(missing_symbols))
            )
        return snapshot


def compute_valuation(
    cash_eur: float,
    aggregates: Mapping[str, PositionAggregate],
    prices: Union[PriceBook, Mapping[str, Any], None],
    gas_tx_count: int,
    gas_per_tx_eur: float,
    **kwargs: Any,
) -> ValuationSnapshot:
    """Module-level shortcut for ValuationCalculator().compute_valuation."""
    return ValuationCalculator().compute_valuation(
        cash_eur, aggregates, prices, gas_tx_count, gas_per_tx_eur, **kwargs
    )


def format_valuation_summary(snapshot: ValuationSnapshot) -> str:
    """One-line summary for logs and the CLI."""
    line = (
        f"total=€{snapshot.total_portfolio_value_eur:.2f} cash=€{snapshot.cash_eur:.2f} "
        f"positions_value=€{snapshot.open_positions_value_eur:.2f} "
        f"unrealized_pnl=€{snapshot.unrealized_pnl_eur:.2f} gas=€{snapshot.gas_spent_eur:.2f}"
    )
    if snapshot.has_missing_prices:
        line += f" PARTIAL missing={','.join(snapshot.missing_symbols)}"
    if snapshot.is_stale:
        line += " STALE"
    return line
