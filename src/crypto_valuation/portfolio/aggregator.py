"""
Trade ledger aggregation.

Turns the currently open trades of one account and one mode into per-asset
position aggregates. Pure: no I/O, no state between calls.
"""

import logging
import math
from collections.abc import Iterable
from typing import Optional

from ..core.exceptions import MalformedInputError, ModeMixingError
from ..core.logging_utils import event_message
from ..core.symbols import position_key
from ..core.utils import require_finite, require_non_negative
from .models import PositionAggregate, Trade, TradeSide, TradingMode

logger = logging.getLogger(__name__)


def validate_trade(trade: Trade) -> None:
    """Reject trades whose numbers cannot be valued.

    Raises:
        MalformedInputError: On a zero amount, or a negative or non-finite
            amount, value or fees
    """
    label = trade.trade_id or trade.symbol
    amount = require_non_negative(trade.amount, f"amount[{label}]")
    if amount == 0:
        raise MalformedInputError(f"Trade {label} has a zero amount", field="amount", value=trade.amount)
    require_non_negative(trade.total_value, f"total_value[{label}]")
    require_non_negative(trade.fees, f"fees[{label}]")
    if not trade.symbol or not position_key(trade.symbol):
        raise MalformedInputError(f"Trade {label} has an empty symbol", field="symbol")


def resolve_mode(trades: Iterable[Trade], expected: Optional[TradingMode] = None) -> Optional[TradingMode]:
    """Return the single mode shared by all trades.

    Args:
        trades: Trades to inspect
        expected: Mode the caller asked for; every trade must match it

    Returns:
        The common mode, `expected` for an empty input

    Raises:
        ModeMixingError: If trades of both modes are present, or any trade
            disagrees with `expected`
    """
    modes = {trade.mode for trade in trades}
    if len(modes) > 1:
        raise ModeMixingError("Refusing to aggregate test-mode and real-mode trades together")
    if not modes:
        return expected
    mode = modes.pop()
    if expected is not None and mode is not expected:
        raise ModeMixingError(
            f"Ledger returned {mode.value}-mode trades for a {expected.value}-mode request"
        )
    return mode


class TradeLedgerAggregator:
    """Groups open trades into PositionAggregate values keyed by base symbol."""

    def aggregate(
        self, trades: Iterable[Trade], mode: Optional[TradingMode] = None
    ) -> dict[str, PositionAggregate]:
        """Aggregate open buy-side exposure per base symbol.

        Corrupted trades are skipped. Sell-side rows are expected to have
        been netted out upstream and are ignored. Assets whose total held
        amount is zero are left out of the result.

        Args:
            trades: Open trades for one account and one mode
            mode: Mode the trades must belong to (checked when given)

        Returns:
            Mapping of upper-case base symbol to its aggregate

        Raises:
            ModeMixingError: If trades of both modes are supplied
            MalformedInputError: On zero amounts, negative or non-finite trade numbers
        """
        trades = list(trades)
        resolve_mode(trades, mode)

        amounts: dict[str, list[float]] = {}
        costs: dict[str, list[float]] = {}
        skipped_corrupted = 0
        skipped_sells = 0

        for trade in trades:
            if trade.is_corrupted:
                skipped_corrupted += 1
                continue
            validate_trade(trade)
            if trade.side is not TradeSide.BUY:
                skipped_sells += 1
                continue

            key = position_key(trade.symbol)
            amounts.setdefault(key, []).append(trade.amount)
            costs.setdefault(key, []).append(trade.total_value + trade.fees)

        if skipped_corrupted or skipped_sells:
            logger.debug(
                event_message(
                    "AGGREGATE_SKIPPED",
                    corrupted=skipped_corrupted,
                    sells=skipped_sells,
                )
            )

        # fsum is exactly rounded, so the totals do not depend on trade order.
        aggregates = {}
        for key in sorted(amounts):
            total_amount = require_finite(math.fsum(amounts[key]), f"total_amount[{key}]")
            if total_amount <= 0:
                continue
            aggregates[key] = PositionAggregate(
                symbol=key,
                total_amount=total_amount,
                total_cost_basis=math.fsum(costs[key]),
                trade_count=len(amounts[key]),
            )
        return aggregates


def aggregate(trades: Iterable[Trade], mode: Optional[TradingMode] = None) -> dict[str, PositionAggregate]:
    """Module-level shortcut for TradeLedgerAggregator().aggregate."""
    return TradeLedgerAggregator().aggregate(trades, mode)
