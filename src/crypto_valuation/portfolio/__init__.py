"""
Ledger aggregation, price resolution and valuation.
"""

from .aggregator import TradeLedgerAggregator, aggregate
from .models import (
    PositionAggregate,
    PositionValue,
    PriceQuote,
    Trade,
    TradeSide,
    TradingMode,
    ValuationSnapshot,
)
from .pricing import PriceBook, PriceResolver, ResolvedPrice
from .valuation import ValuationCalculator, compute_valuation, format_pnl_with_sign

__all__ = [
    "PositionAggregate",
    "PositionValue",
    "PriceBook",
    "PriceQuote",
    "PriceResolver",
    "ResolvedPrice",
    "Trade",
    "TradeLedgerAggregator",
    "TradeSide",
    "TradingMode",
    "ValuationCalculator",
    "ValuationSnapshot",
    "aggregate",
    "compute_valuation",
    "format_pnl_with_sign",
]
