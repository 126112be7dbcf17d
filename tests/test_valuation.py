"""
Unit tests for portfolio valuation.
"""

import math
import random
from datetime import datetime, timezone

import pytest

from crypto_valuation.core.exceptions import MalformedInputError
from crypto_valuation.portfolio.aggregator import aggregate
from crypto_valuation.portfolio.models import PositionAggregate, Trade, TradeSide, TradingMode
from crypto_valuation.portfolio.valuation import (
    ValuationCalculator,
    compute_gas_spent_eur,
    compute_valuation,
    format_pnl_with_sign,
    format_valuation_summary,
)


def btc_trade():
    return Trade(
        symbol="BTC",
        side=TradeSide.BUY,
        amount=0.5,
        total_value=20000.0,
        fees=10.0,
        executed_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        is_test_mode=True,
    )


class TestValuationCalculator:
    """Test ValuationCalculator functionality."""

    def setup_method(self):
        self.calculator = ValuationCalculator()

    def test_reference_scenario(self):
        aggregates = aggregate([btc_trade()])

        snapshot = self.calculator.compute_valuation(
            5000.0, aggregates, {"BTC-EUR": 42000.0}, gas_tx_count=20, gas_per_tx_eur=0.10
        )

        assert snapshot.open_positions_value_eur == pytest.approx(21000.0)
        assert snapshot.unrealized_pnl_eur == pytest.approx(990.0)
        assert snapshot.gas_spent_eur == pytest.approx(2.0)
        assert snapshot.total_portfolio_value_eur == pytest.approx(5988.0)
        assert snapshot.missing_symbols == []
        assert not snapshot.has_missing_prices

        position = snapshot.positions[0]
        assert position.symbol == "BTC"
        assert position.live_value == pytest.approx(21000.0)
        assert position.unrealized_pnl == pytest.approx(990.0)
        assert position.matched_key == "BTC-EUR"

    def test_formula_invariant(self):
        rng = random.Random(11)
        for _ in range(50):
            aggregates = {}
            prices = {}
            for symbol in rng.sample(["BTC", "ETH", "SOL", "ADA", "DOT", "XRP"], 4):
                amount = rng.uniform(0.01, 10.0)
                aggregates[symbol] = PositionAggregate(symbol, amount, amount * rng.uniform(1, 5000))
                if rng.random() < 0.7:
                    prices[f"{symbol}-EUR"] = rng.uniform(1, 5000)

            snapshot = self.calculator.compute_valuation(
                rng.uniform(0, 10000), aggregates, prices, rng.randint(0, 100), 0.10
            )

            expected = snapshot.cash_eur + snapshot.unrealized_pnl_eur - snapshot.gas_spent_eur
            assert abs(snapshot.total_portfolio_value_eur - expected) <= 1e-6

    def test_missing_price_excluded_from_pnl(self):
        aggregates = {
            "BTC": PositionAggregate("BTC", 0.5, 20010.0),
            "XYZ": PositionAggregate("XYZ", 100.0, 5000.0),
        }

        snapshot = self.calculator.compute_valuation(
            1000.0, aggregates, {"BTC-EUR": 42000.0}, gas_tx_count=0, gas_per_tx_eur=0.0
        )

        assert snapshot.missing_symbols == ["XYZ"]
        assert snapshot.has_missing_prices
        assert snapshot.unrealized_pnl_eur == pytest.approx(990.0)
        assert snapshot.open_positions_value_eur == pytest.approx(21000.0)
        assert snapshot.priced_cost_basis_eur == pytest.approx(20010.0)
        assert snapshot.cost_basis_eur == pytest.approx(25010.0)
        assert snapshot.total_portfolio_value_eur == pytest.approx(1990.0)
        assert snapshot.priced_positions == 1

        unpriced = [p for p in snapshot.positions if p.symbol == "XYZ"][0]
        assert not unpriced.is_priced
        assert unpriced.unrealized_pnl is None

    def test_no_prices_at_all(self):
        snapshot = self.calculator.compute_valuation(
            1000.0, {"BTC": PositionAggregate("BTC", 1.0, 100.0)}, None, 0, 0.0
        )

        assert snapshot.missing_symbols == ["BTC"]
        assert snapshot.unrealized_pnl_eur == 0.0
        assert snapshot.total_portfolio_value_eur == 1000.0

    def test_zero_amount_aggregate_skipped(self):
        snapshot = self.calculator.compute_valuation(
            100.0, {"BTC": PositionAggregate("BTC", 0.0, 0.0)}, {}, 0, 0.0
        )
        assert snapshot.positions == []
        assert snapshot.missing_symbols == []

    def test_empty_portfolio(self):
        snapshot = self.calculator.compute_valuation(2500.0, {}, {}, 3, 0.10)

        assert snapshot.open_positions_value_eur == 0.0
        assert snapshot.total_portfolio_value_eur == pytest.approx(2499.7)

    def test_negative_amount_rejected(self):
        with pytest.raises(MalformedInputError):
            self.calculator.compute_valuation(
                0.0, {"BTC": PositionAggregate("BTC", -1.0, 100.0)}, {"BTC": 1.0}, 0, 0.0
            )

    def test_non_finite_cash_rejected(self):
        with pytest.raises(MalformedInputError):
            self.calculator.compute_valuation(math.nan, {}, {}, 0, 0.0)
        with pytest.raises(MalformedInputError):
            self.calculator.compute_valuation(math.inf, {}, {}, 0, 0.0)

    def test_starting_capital_total_pnl(self):
        snapshot = self.calculator.compute_valuation(
            5000.0, aggregate([btc_trade()]), {"BTC-EUR": 42000.0}, 20, 0.10,
            starting_capital_eur=5000.0, mode=TradingMode.TEST,
        )

        assert snapshot.total_pnl_eur == pytest.approx(988.0)
        assert snapshot.total_pnl_pct == pytest.approx(19.76)
        assert snapshot.to_dict()["mode"] == "test"

    def test_zero_starting_capital_pct(self):
        snapshot = self.calculator.compute_valuation(10.0, {}, {}, 0, 0.0, starting_capital_eur=0.0)
        assert snapshot.total_pnl_pct == 0.0

    def test_module_level_shortcut(self):
        snapshot = compute_valuation(5000.0, aggregate([btc_trade()]), {"BTC": 42000.0}, 20, 0.10)
        assert snapshot.total_portfolio_value_eur == pytest.approx(5988.0)

    def test_summary_flags_partial(self):
        snapshot = self.calculator.compute_valuation(
            0.0, {"XYZ": PositionAggregate("XYZ", 1.0, 1.0)}, {}, 0, 0.0
        )
        assert "PARTIAL missing=XYZ" in format_valuation_summary(snapshot)

    def test_to_dict(self):
        snapshot = self.calculator.compute_valuation(
            5000.0, aggregate([btc_trade()]), {"BTC-EUR": 42000.0}, 20, 0.10
        )
        data = snapshot.to_dict()

        assert data["total_portfolio_value_eur"] == pytest.approx(5988.0)
        assert data["has_missing_prices"] is False
        assert data["positions"][0]["symbol"] == "BTC"


class TestGasAndPnlHelpers:
    """Test gas and P&L helpers."""

    def test_gas_spent(self):
        assert compute_gas_spent_eur(20, 0.10) == pytest.approx(2.0)
        assert compute_gas_spent_eur(0, 0.10) == 0.0

    def test_gas_rejects_bad_input(self):
        with pytest.raises(MalformedInputError):
            compute_gas_spent_eur(-1, 0.10)
        with pytest.raises(MalformedInputError):
            compute_gas_spent_eur(1, -0.10)
        with pytest.raises(MalformedInputError):
            compute_gas_spent_eur(1.5, 0.10)

    def test_format_pnl_with_sign(self):
        assert format_pnl_with_sign(990.0) == {"sign": "+", "value": "€990.00", "label": "Profit"}
        assert format_pnl_with_sign(-12.5) == {"sign": "-", "value": "€12.50", "label": "Loss"}
        assert format_pnl_with_sign(0.004)["label"] == "Break-even"
