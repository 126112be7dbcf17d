"""
Coinbase Exchange ticker price feed.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import aiohttp
from loguru import logger

from ..core.config_schema import PriceFeedConfig
from ..core.symbols import DEFAULT_QUOTE, to_base_symbol, to_pair_symbol
from ..core.utils import is_usable_price
from ..portfolio.models import PriceQuote
from .base import PriceFeed

RATE_LIMITED = "rate_limited"
PAIR_NOT_FOUND = "pair_not_found"
NETWORK_ERROR = "network_error"
UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class FailedSymbol:
    """A symbol the feed could not price, with the reason."""

    symbol: str
    reason: str


class CoinbaseTickerPriceFeed(PriceFeed):
    """Fetches `/products/{PAIR}/ticker` for each held symbol.

    429 responses and network errors are retried with exponential backoff;
    404 is final. Failed symbols are omitted from the result and listed in
    `last_failures`.
    """

    def __init__(
        self,
        config: Optional[PriceFeedConfig] = None,
        quote_currency: str = DEFAULT_QUOTE,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or PriceFeedConfig()
        self.quote_currency = quote_currency
        self._session = session
        self._owns_session = session is None
        self.last_failures: list[FailedSymbol] = []

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_s)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def ticker_url(self, pair: str) -> str:
        return f"{self.config.base_url}/products/{pair}/ticker"

    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, PriceQuote]:
        """Fetch quotes for the base symbols of `symbols`.

        Raises:
            ConnectionError: If every symbol failed with a network error
        """
        bases = sorted({to_base_symbol(symbol).upper() for symbol in symbols if symbol})
        quotes: dict[str, PriceQuote] = {}
        failures: list[FailedSymbol] = []
        if not bases:
            self.last_failures = []
            return quotes

        session = await self._get_session()
        for base in bases:
            pair = to_pair_symbol(base, self.quote_currency)
            quote, reason = await self._fetch_ticker(session, pair)
            if quote is not None:
                quotes[pair] = quote
            else:
                failures.append(FailedSymbol(symbol=base, reason=reason))

        self.last_failures = failures
        if failures:
            logger.warning(
                "PRICE_FEED_FAILURES: "
                + " ".join(f"{failure.symbol}={failure.reason}" for failure in failures)
            )
        if not quotes and all(failure.reason == NETWORK_ERROR for failure in failures):
            raise ConnectionError(f"Price feed unreachable for {','.join(bases)}")

        logger.debug(f"PRICE_FEED_FETCHED: pairs={','.join(sorted(quotes))} failed={len(failures)}")
        return quotes

    async def _fetch_ticker(
        self, session: aiohttp.ClientSession, pair: str
    ) -> tuple[Optional[PriceQuote], str]:
        reason = UNEXPECTED
        for attempt in range(self.config.max_retries):
            try:
                async with session.get(self.ticker_url(pair)) as response:
                    if response.status == 200:
                        data = await response.json()
                        return self._parse_ticker(pair, data), UNEXPECTED
                    if response.status == 404:
                        return None, PAIR_NOT_FOUND
                    if response.status != 429:
                        logger.warning(f"PRICE_FEED_HTTP: pair={pair} status={response.status}")
                        return None, UNEXPECTED
                    reason = RATE_LIMITED
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                reason = NETWORK_ERROR
                logger.debug(f"PRICE_FEED_NETWORK: pair={pair} attempt={attempt + 1} error={e}")
            except ValueError as e:
                logger.warning(f"PRICE_FEED_BAD_BODY: pair={pair} error={e}")
                return None, UNEXPECTED

            if attempt + 1 < self.config.max_retries:
                delay = self.config.initial_retry_delay_s * (2 ** attempt)
                logger.debug(f"PRICE_FEED_RETRY: pair={pair} reason={reason} delay={delay:.2f}s")
                await asyncio.sleep(delay)
        return None, reason

    @staticmethod
    def _parse_ticker(pair: str, data: Any) -> Optional[PriceQuote]:
        if not isinstance(data, dict):
            return None
        try:
            price = float(data.get("price") or 0)
        except (TypeError, ValueError):
            return None
        if not is_usable_price(price):
            return None

        as_of = None
        raw_time = data.get("time")
        if isinstance(raw_time, str):
            try:
                as_of = datetime.fromisoformat(raw_time.replace("Z", "+00:00"))
            except ValueError:
                as_of = None
        return PriceQuote(symbol=pair, price=price, as_of=as_of or datetime.now(timezone.utc))
