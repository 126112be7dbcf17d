"""
Live price resolution.

A PriceBook freezes one price map for the duration of a valuation so that
every position is marked against the same snapshot. PriceResolver looks a
held asset up in that map through a fixed fallback chain.
"""

import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from ..core.logging_utils import event_message
from ..core.symbols import DEFAULT_QUOTE, split_symbol, to_pair_symbol
from ..core.utils import is_usable_price
from .models import PriceQuote

logger = logging.getLogger(__name__)

_book_ids = itertools.count(1)

PriceInput = Union[PriceQuote, float, int, Mapping]


def coerce_quote(key: str, value: Any) -> Optional[PriceQuote]:
    """Normalize a raw price map entry into a PriceQuote.

    Accepts PriceQuote instances, bare numbers and `{"price": ...}`
    mappings. Anything else yields None.
    """
    if isinstance(value, PriceQuote):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return PriceQuote(symbol=key, price=float(value))
    if isinstance(value, Mapping):
        price = value.get("price")
        if isinstance(price, str):
            try:
                price = float(price)
            except ValueError:
                return None
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            return None
        as_of = value.get("as_of") or value.get("asOf")
        return PriceQuote(
            symbol=key,
            price=float(price),
            as_of=as_of if isinstance(as_of, datetime) else None,
        )
    return None


@dataclass
class PriceBook:
    """Frozen price map for one valuation or reconciliation pass."""

    quotes: dict[str, PriceQuote] = field(default_factory=dict)
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: int = field(default_factory=lambda: next(_book_ids))
    hits: int = 0
    misses: int = 0

    @classmethod
    def from_mapping(
        cls, prices: Optional[Mapping[str, PriceInput]], ts: Optional[datetime] = None
    ) -> "PriceBook":
        """Build a book from any symbol -> price mapping, dropping unreadable entries."""
        quotes = {}
        for key, value in (prices or {}).items():
            quote = coerce_quote(key, value)
            if quote is not None:
                quotes[key] = quote
        if ts is None:
            return cls(quotes=quotes)
        return cls(quotes=quotes, ts=ts)

    def get(self, key: str) -> Optional[PriceQuote]:
        return self.quotes.get(key)

    def keys(self):
        return self.quotes.keys()

    def record(self, found: bool) -> None:
        if found:
            self.hits += 1
        else:
            self.misses += 1

    def get_staleness_ms(self, now: Optional[datetime] = None) -> int:
        """Age of the book in milliseconds."""
        now = now or datetime.now(timezone.utc)
        return int((now - self.ts).total_seconds() * 1000)

    def get_pricing_context(self) -> dict[str, Any]:
        """Summary used in log lines."""
        return {
            "id": self.id,
            "hits": self.hits,
            "misses": self.misses,
            "staleness_ms": self.get_staleness_ms(),
            "symbol_count": len(self.quotes),
        }


@dataclass(frozen=True)
class ResolvedPrice:
    """Outcome of one resolution: a usable price and the key it came from, or nothing."""

    price: Optional[float]
    found: bool
    matched_key: Optional[str] = None
    step: Optional[int] = None

    def __iter__(self):
        # Unpacks as the (price, found) pair.
        return iter((self.price, self.found))


NOT_FOUND = ResolvedPrice(price=None, found=False)


class PriceResolver:
    """Resolves a positive live price for a symbol.

    Lookup order, stopping at the first usable (finite, > 0) price:

    1. exact pair form ("BTC-EUR")
    2. exact base form ("BTC")
    3. case-insensitive pair form
    4. case-insensitive base form

    A non-positive or NaN quote is treated as absent and the chain moves on.
    """

    def __init__(self, quote_currency: str = DEFAULT_QUOTE):
        self.quote_currency = quote_currency

    def candidates(self, symbol: str) -> tuple[str, str]:
        """Return the (pair, base) lookup keys for a symbol."""
        base, quote = split_symbol(symbol)
        return to_pair_symbol(base, quote or self.quote_currency), base

    def resolve_detailed(
        self, symbol: str, prices: Union[PriceBook, Mapping[str, PriceInput], None]
    ) -> ResolvedPrice:
        """Resolve a price and report which key and fallback step matched."""
        book = prices if isinstance(prices, PriceBook) else None
        try:
            resolved = self._resolve(symbol, prices)
        except (AttributeError, TypeError) as e:
            # Unreadable price maps count as a miss, never as an exception.
            logger.warning(event_message("PRICE_MAP_UNREADABLE", symbol=symbol, error=e))
            resolved = NOT_FOUND

        if book is not None:
            book.record(resolved.found)
        if not resolved.found:
            logger.debug(event_message("PRICE_MISS", symbol=symbol))
        return resolved

    def resolve(
        self, symbol: str, prices: Union[PriceBook, Mapping[str, PriceInput], None]
    ) -> tuple[Optional[float], bool]:
        """Resolve a live price.

        Returns:
            (price, True) for a usable price, (None, False) otherwise
        """
        resolved = self.resolve_detailed(symbol, prices)
        return resolved.price, resolved.found

    def _resolve(self, symbol: str, prices) -> ResolvedPrice:
        if not prices or not symbol or not str(symbol).strip():
            return NOT_FOUND

        pair, base = self.candidates(symbol)

        for step, key in ((1, pair), (2, base)):
            price = self._lookup(prices, key)
            if price is not None:
                return ResolvedPrice(price=price, found=True, matched_key=key, step=step)

        keys = list(prices.keys())
        for step, target in ((3, pair.upper()), (4, base.upper())):
            for key in keys:
                if not isinstance(key, str) or key.upper() != target:
                    continue
                price = self._lookup(prices, key)
                if price is not None:
                    return ResolvedPrice(price=price, found=True, matched_key=key, step=step)

        return NOT_FOUND

    @staticmethod
    def _lookup(prices, key: str) -> Optional[float]:
        value = prices.get(key)
        if value is None:
            return None
        quote = coerce_quote(key, value)
        if quote is None or not is_usable_price(quote.price):
            return None
        return quote.price
