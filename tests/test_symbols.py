"""
Unit tests for symbol normalization.
"""

from crypto_valuation.core.symbols import position_key, split_symbol, to_base_symbol, to_pair_symbol


class TestSymbols:
    """Test pair/base symbol conversions."""

    def test_base_symbol_strips_quote(self):
        assert to_base_symbol("BTC-EUR") == "BTC"
        assert to_base_symbol("ETH/USD") == "ETH"
        assert to_base_symbol("SOL") == "SOL"
        assert to_base_symbol("  ada-eur ") == "ada"

    def test_pair_symbol(self):
        assert to_pair_symbol("BTC") == "BTC-EUR"
        assert to_pair_symbol("BTC", quote="USD") == "BTC-USD"
        # An existing quote is kept
        assert to_pair_symbol("ETH/USD") == "ETH-USD"

    def test_split_symbol(self):
        assert split_symbol("BTC-EUR") == ("BTC", "EUR")
        assert split_symbol("BTC") == ("BTC", None)
        assert split_symbol("BTC-") == ("BTC", None)

    def test_position_key_is_upper_base(self):
        assert position_key("btc-eur") == "BTC"
        assert position_key("Eth") == "ETH"
