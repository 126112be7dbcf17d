"""
Unit tests for the Coinbase ticker price feed.
"""

import asyncio

import aiohttp
import pytest

from crypto_valuation.core.config_schema import PriceFeedConfig
from crypto_valuation.feeds.coinbase import (
    NETWORK_ERROR,
    PAIR_NOT_FOUND,
    RATE_LIMITED,
    UNEXPECTED,
    CoinbaseTickerPriceFeed,
)

BASE_URL = "https://api.exchange.coinbase.com"


def ticker_url(pair):
    return f"{BASE_URL}/products/{pair}/ticker"


class FakeResponse:
    """Minimal aiohttp response stand-in."""

    def __init__(self, status, payload=None):
        self.status = status
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def json(self):
        return self.payload


class FakeSession:
    """Replays scripted responses per URL."""

    closed = False

    def __init__(self, script):
        self.script = {url: list(outcomes) for url, outcomes in script.items()}
        self.calls = []

    def get(self, url):
        self.calls.append(url)
        outcome = self.script[url].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestCoinbaseTickerPriceFeed:
    """Test CoinbaseTickerPriceFeed functionality."""

    def make_feed(self, script):
        session = FakeSession(script)
        config = PriceFeedConfig(max_retries=3, initial_retry_delay_s=0.0)
        return CoinbaseTickerPriceFeed(config, session=session), session

    def test_fetch_success(self):
        feed, session = self.make_feed({
            ticker_url("BTC-EUR"): [FakeResponse(200, {"price": "42000.5", "time": "2025-01-01T00:00:00Z"})],
        })

        quotes = asyncio.run(feed.fetch_prices(["BTC"]))

        assert quotes["BTC-EUR"].price == 42000.5
        assert quotes["BTC-EUR"].as_of.year == 2025
        assert feed.last_failures == []

    def test_symbols_deduplicated_by_base(self):
        feed, session = self.make_feed({
            ticker_url("BTC-EUR"): [FakeResponse(200, {"price": "42000"})],
        })

        asyncio.run(feed.fetch_prices(["BTC", "BTC-EUR", "btc"]))

        assert session.calls == [ticker_url("BTC-EUR")]

    def test_rate_limit_retried(self):
        feed, session = self.make_feed({
            ticker_url("ETH-EUR"): [FakeResponse(429), FakeResponse(200, {"price": "2500"})],
        })

        quotes = asyncio.run(feed.fetch_prices(["ETH"]))

        assert quotes["ETH-EUR"].price == 2500.0
        assert len(session.calls) == 2

    def test_rate_limit_exhausts_retries(self):
        feed, session = self.make_feed({
            ticker_url("ETH-EUR"): [FakeResponse(429)] * 3,
        })

        quotes = asyncio.run(feed.fetch_prices(["ETH"]))

        assert quotes == {}
        assert len(session.calls) == 3
        assert feed.last_failures[0].symbol == "ETH"
        assert feed.last_failures[0].reason == RATE_LIMITED

    def test_not_found_not_retried(self):
        feed, session = self.make_feed({
            ticker_url("FOO-EUR"): [FakeResponse(404)],
            ticker_url("BTC-EUR"): [FakeResponse(200, {"price": "42000"})],
        })

        quotes = asyncio.run(feed.fetch_prices(["FOO", "BTC"]))

        assert list(quotes) == ["BTC-EUR"]
        assert session.calls.count(ticker_url("FOO-EUR")) == 1
        assert [(f.symbol, f.reason) for f in feed.last_failures] == [("FOO", PAIR_NOT_FOUND)]

    def test_server_error_is_unexpected(self):
        feed, session = self.make_feed({ticker_url("BTC-EUR"): [FakeResponse(500)]})

        asyncio.run(feed.fetch_prices(["BTC"]))

        assert feed.last_failures[0].reason == UNEXPECTED
        assert len(session.calls) == 1

    def test_non_positive_price_is_unexpected(self):
        feed, _ = self.make_feed({ticker_url("BTC-EUR"): [FakeResponse(200, {"price": "0"})]})

        quotes = asyncio.run(feed.fetch_prices(["BTC"]))

        assert quotes == {}
        assert feed.last_failures[0].reason == UNEXPECTED

    def test_network_error_retried(self):
        feed, session = self.make_feed({
            ticker_url("BTC-EUR"): [
                aiohttp.ClientConnectionError("reset"),
                FakeResponse(200, {"price": "42000"}),
            ],
            ticker_url("ETH-EUR"): [aiohttp.ClientConnectionError("reset")] * 3,
        })

        quotes = asyncio.run(feed.fetch_prices(["BTC", "ETH"]))

        assert list(quotes) == ["BTC-EUR"]
        assert [(f.symbol, f.reason) for f in feed.last_failures] == [("ETH", NETWORK_ERROR)]

    def test_total_network_failure_raises(self):
        feed, _ = self.make_feed({
            ticker_url("BTC-EUR"): [asyncio.TimeoutError()] * 3,
        })

        with pytest.raises(ConnectionError):
            asyncio.run(feed.fetch_prices(["BTC"]))

    def test_empty_symbols(self):
        feed, session = self.make_feed({})

        assert asyncio.run(feed.fetch_prices([])) == {}
        assert session.calls == []

    def test_quote_currency(self):
        session = FakeSession({ticker_url("BTC-USD"): [FakeResponse(200, {"price": "45000"})]})
        feed = CoinbaseTickerPriceFeed(PriceFeedConfig(), quote_currency="USD", session=session)

        assert asyncio.run(feed.fetch_prices(["BTC"]))["BTC-USD"].price == 45000.0

    def test_close_leaves_injected_session_open(self):
        feed, session = self.make_feed({})
        session.close = None

        asyncio.run(feed.close())
