"""
Symbol normalization between exchange pair form ("BTC-EUR") and base form ("BTC").
"""

from typing import Optional

DEFAULT_QUOTE = "EUR"

_SEPARATORS = ("-", "/")


def split_symbol(symbol: str) -> tuple[str, Optional[str]]:
    """Split a symbol into (base, quote); quote is None for bare symbols."""
    cleaned = (symbol or "").strip()
    for separator in _SEPARATORS:
        if separator in cleaned:
            base, _, quote = cleaned.partition(separator)
            return base.strip(), (quote.strip() or None)
    return cleaned, None


def to_base_symbol(symbol: str) -> str:
    """Strip any quote suffix: "BTC-EUR" -> "BTC", "ETH/USD" -> "ETH", "SOL" -> "SOL"."""
    return split_symbol(symbol)[0]


def to_pair_symbol(symbol: str, quote: str = DEFAULT_QUOTE) -> str:
    """Build the dash-separated pair form used by the price feed: "BTC" -> "BTC-EUR"."""
    base, existing_quote = split_symbol(symbol)
    return f"{base}-{existing_quote or quote}"


def position_key(symbol: str) -> str:
    """Key under which trades of one asset are grouped."""
    return to_base_symbol(symbol).upper()
