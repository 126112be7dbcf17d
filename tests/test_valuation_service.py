"""
Unit tests for the account-scoped valuation service.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from crypto_valuation.core.exceptions import (
    LiveTradingBlockedError,
    ModeMixingError,
    UpstreamUnavailableError,
)
from crypto_valuation.engine import ValuationService
from crypto_valuation.feeds.base import (
    LedgerSource,
    LedgerState,
    PrerequisiteSource,
    PriceFeed,
    StaticLedgerSource,
    StaticPrerequisiteSource,
    StaticPriceFeed,
    StaticWalletSource,
)
from crypto_valuation.live.readiness import ReadinessState
from crypto_valuation.portfolio.models import PriceQuote, Trade, TradeSide, TradingMode
from crypto_valuation.reconciliation.reconciler import Coverage


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def trade(symbol="BTC", amount=0.5, total_value=20000.0, fees=10.0, is_test_mode=True):
    return Trade(
        symbol=symbol,
        side=TradeSide.BUY,
        amount=amount,
        total_value=total_value,
        fees=fees,
        executed_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        is_test_mode=is_test_mode,
    )


def ledger(trades, cash_eur=5000.0, tx_count=20, starting_capital_eur=None):
    return LedgerState(
        open_trades=tuple(trades),
        cash_eur=cash_eur,
        tx_count=tx_count,
        starting_capital_eur=starting_capital_eur,
    )


PRICES = {
    "BTC-EUR": PriceQuote("BTC-EUR", 42000.0),
    "ETH-EUR": PriceQuote("ETH-EUR", 2500.0),
}

WALLET = {
    "address": "0xabc",
    "balances": {"ETH": {"symbol": "ETH", "amount": 0.4, "value_eur": 1000.0}},
    "total_value_eur": 1000.0,
}

READY = {
    "checks": {"wallet_exists": True, "has_portfolio_capital": True, "rules_accepted": True},
    "panic_active": False,
}


class TestValuationService:
    """Test ValuationService functionality."""

    def setup_method(self):
        self.clock = FakeClock()
        self.ledgers = StaticLedgerSource(ledgers={
            ("acct-1", TradingMode.TEST): ledger([trade()], starting_capital_eur=5000.0),
            ("acct-1", TradingMode.REAL): ledger(
                [trade("ETH", amount=0.4, total_value=900.0, fees=0.0, is_test_mode=False)],
                cash_eur=0.0,
                tx_count=1,
            ),
        })
        self.prices = StaticPriceFeed(quotes=dict(PRICES))
        self.wallets = StaticWalletSource(payloads={"acct-1": dict(WALLET)})
        self.prerequisites = StaticPrerequisiteSource(responses={"acct-1": dict(READY)})
        self.service = ValuationService(
            self.ledgers,
            self.prices,
            wallet_source=self.wallets,
            prerequisite_source=self.prerequisites,
            clock=self.clock,
        )

    def test_test_mode_valuation(self):
        snapshot = asyncio.run(self.service.get_valuation("acct-1", "test"))

        assert snapshot.mode is TradingMode.TEST
        assert snapshot.total_portfolio_value_eur == pytest.approx(5988.0)
        assert snapshot.gas_spent_eur == pytest.approx(2.0)
        assert snapshot.total_pnl_eur == pytest.approx(988.0)
        assert not snapshot.is_stale

    def test_real_mode_has_no_gas_estimate(self):
        snapshot = asyncio.run(self.service.get_valuation("acct-1", TradingMode.REAL))

        assert snapshot.gas_spent_eur == 0.0
        assert snapshot.total_portfolio_value_eur == pytest.approx(100.0)

    def test_mode_mismatch_from_ledger_rejected(self):
        self.ledgers.ledgers[("acct-2", TradingMode.REAL)] = ledger([trade(is_test_mode=True)])

        with pytest.raises(ModeMixingError):
            asyncio.run(self.service.get_valuation("acct-2", "real"))

    def test_unknown_account_unavailable(self):
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            asyncio.run(self.service.get_valuation("nobody", "test"))

        assert exc_info.value.source == "ledger"

    def test_stale_ledger_served_after_failure(self):
        source = Mock(spec=LedgerSource)
        source.fetch_ledger = AsyncMock(return_value=ledger([trade()]))
        service = ValuationService(source, self.prices, clock=self.clock)

        fresh = asyncio.run(service.get_valuation("acct-1", "test"))
        source.fetch_ledger.side_effect = ConnectionError("db down")
        stale = asyncio.run(service.get_valuation("acct-1", "test", refresh=True))

        assert stale.is_stale
        assert stale.total_portfolio_value_eur == pytest.approx(fresh.total_portfolio_value_eur)
        assert stale.as_of == fresh.as_of

    def test_ledger_polled_at_most_once_per_interval(self):
        source = Mock(spec=LedgerSource)
        source.fetch_ledger = AsyncMock(return_value=ledger([trade()]))
        service = ValuationService(source, self.prices, clock=self.clock)

        asyncio.run(service.get_valuation("acct-1", "test"))
        asyncio.run(service.get_valuation("acct-1", "test"))
        assert source.fetch_ledger.await_count == 1

        self.clock.now += 5.0
        asyncio.run(service.get_valuation("acct-1", "test"))
        assert source.fetch_ledger.await_count == 2

    def test_new_symbol_refreshes_prices(self):
        feed = Mock(spec=PriceFeed)
        feed.fetch_prices = AsyncMock(return_value=dict(PRICES))
        service = ValuationService(self.ledgers, feed, clock=self.clock)

        asyncio.run(service.get_valuation("acct-1", "test"))
        self.ledgers.ledgers[("acct-1", TradingMode.TEST)] = ledger([trade(), trade("ETH", 1.0, 2000.0, 0.0)])
        self.clock.now += 5.0
        snapshot = asyncio.run(service.get_valuation("acct-1", "test"))

        assert feed.fetch_prices.await_count == 2
        assert feed.fetch_prices.await_args.args[0] == ["BTC", "ETH"]
        assert snapshot.missing_symbols == []

    def test_missing_price_is_partial_not_error(self):
        self.prices.quotes.pop("BTC-EUR")

        snapshot = asyncio.run(self.service.get_valuation("acct-1", "test"))

        assert snapshot.missing_symbols == ["BTC"]
        assert snapshot.total_portfolio_value_eur == pytest.approx(4998.0)

    def test_price_feed_down_without_snapshot(self):
        feed = Mock(spec=PriceFeed)
        feed.fetch_prices = AsyncMock(side_effect=ConnectionError("feed down"))
        service = ValuationService(self.ledgers, feed, clock=self.clock)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            asyncio.run(service.get_valuation("acct-1", "test"))

        assert exc_info.value.source == "prices"

    def test_reconciliation_uses_real_ledger(self):
        result = asyncio.run(self.service.get_reconciliation("acct-1"))

        assert result.ledger_total_eur == pytest.approx(100.0)
        assert result.wallet_total_eur == 1000.0
        assert result.drift_eur == pytest.approx(900.0)
        assert result.drift_pct == pytest.approx(900.0)
        assert result.coverage is Coverage.FULL

    def test_reconciliation_partial_coverage(self):
        self.ledgers.ledgers[("acct-1", TradingMode.REAL)] = ledger(
            [trade("BTC", is_test_mode=False)], cash_eur=0.0, tx_count=1
        )

        result = asyncio.run(self.service.get_reconciliation("acct-1"))

        assert result.coverage is Coverage.PARTIAL
        assert result.uncovered_symbols == ["BTC"]

    def test_reconciliation_without_wallet_source(self):
        service = ValuationService(self.ledgers, self.prices, clock=self.clock)

        with pytest.raises(UpstreamUnavailableError):
            asyncio.run(service.get_reconciliation("acct-1"))

    def test_malformed_wallet_payload_unavailable(self):
        self.wallets.payloads["acct-1"] = {"error": "No wallet found"}

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            asyncio.run(self.service.get_reconciliation("acct-1"))

        assert exc_info.value.source == "wallet"

    def test_readiness(self):
        evaluation = asyncio.run(self.service.get_readiness("acct-1"))
        assert evaluation.state is ReadinessState.READY

    def test_readiness_without_source_is_error(self):
        service = ValuationService(self.ledgers, self.prices)
        assert asyncio.run(service.get_readiness("acct-1")).state is ReadinessState.ERROR

    def test_readiness_source_failure_is_error(self):
        source = Mock(spec=PrerequisiteSource)
        source.fetch_prerequisites = AsyncMock(side_effect=TimeoutError("rpc timeout"))
        service = ValuationService(self.ledgers, self.prices, prerequisite_source=source)

        evaluation = asyncio.run(service.get_readiness("acct-1"))

        assert evaluation.state is ReadinessState.ERROR
        assert "rpc timeout" in evaluation.error

    def test_ensure_live_ready_blocks(self):
        self.prerequisites.responses["acct-1"] = {**READY, "panic_active": True}

        with pytest.raises(LiveTradingBlockedError):
            asyncio.run(self.service.ensure_live_ready("acct-1"))

    def test_close_account_cancels_pollers(self):
        asyncio.run(self.service.get_reconciliation("acct-1"))
        pollers = [
            self.service.pollers.get("ledger", "acct-1", "real"),
            self.service.pollers.get("wallet", "acct-1", None),
        ]

        closed = self.service.close_account("acct-1")

        assert closed == 3
        assert all(poller.cancelled for poller in pollers)
        assert len(self.service.pollers) == 0

    def test_aclose(self):
        asyncio.run(self.service.get_valuation("acct-1", "test"))
        asyncio.run(self.service.aclose())

        assert len(self.service.pollers) == 0
