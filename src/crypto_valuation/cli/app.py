"""
Command-line interface for the valuation engine.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import yaml

from ..core.config_manager import ConfigManager
from ..core.exceptions import MalformedInputError, ValuationEngineError
from ..core.logging_utils import setup_logging, setup_logging_from_config
from ..core.utils import format_currency, format_percentage, get_version
from ..engine import ValuationService
from ..feeds.base import (
    LedgerState,
    StaticLedgerSource,
    StaticPrerequisiteSource,
    StaticPriceFeed,
    StaticWalletSource,
)
from ..feeds.coinbase import CoinbaseTickerPriceFeed
from ..live.readiness import FundingReadinessStateMachine, ReadinessState
from ..portfolio.aggregator import TradeLedgerAggregator
from ..portfolio.models import Trade, TradingMode, ValuationSnapshot
from ..portfolio.pricing import coerce_quote
from ..portfolio.valuation import ValuationCalculator, format_pnl_with_sign

EXIT_READY = 0
EXIT_NOT_READY = 1
EXIT_ERROR = 2


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="crypto-valuation",
        description="Portfolio valuation, wallet reconciliation and live-trading readiness",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file (default: config/valuation.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    valuate = subparsers.add_parser("valuate", help="Value a trade ledger against a price map")
    valuate.add_argument("--trades", required=True, help="YAML/JSON file with open trades")
    valuate.add_argument("--prices", required=True, help="YAML/JSON file mapping symbol to price")
    valuate.add_argument("--cash", type=float, required=True, help="Cash balance in EUR")
    valuate.add_argument(
        "--mode", required=True, choices=[mode.value for mode in TradingMode], help="Ledger mode"
    )
    valuate.add_argument("--tx-count", type=int, help="Ledger transactions for gas (default: number of trades)")
    valuate.add_argument("--gas-per-tx", type=float, help="Gas estimate per transaction (default: from config)")
    valuate.add_argument("--starting-capital", type=float, help="Deposited capital, enables total P&L")
    valuate.add_argument("--json", action="store_true", help="Print the valuation as JSON")

    readiness = subparsers.add_parser("readiness", help="Derive readiness from a prerequisite response")
    readiness.add_argument("--prerequisites", required=True, help="YAML/JSON prerequisite response")
    readiness.add_argument("--account", default=None, help="Account id for log lines")
    readiness.add_argument("--json", action="store_true", help="Print the evaluation as JSON")

    serve = subparsers.add_parser("serve", help="Serve the HTTP API")
    serve.add_argument("--fixtures", required=True, help="YAML/JSON file with accounts to serve")
    serve.add_argument("--host", type=str, help="Override server host")
    serve.add_argument("--port", type=int, help="Override server port")

    return parser


def load_document(path: str) -> Any:
    """Read a YAML or JSON file."""
    try:
        with open(path, encoding="utf-8") as file:
            return yaml.safe_load(file)
    except yaml.YAMLError as e:
        raise MalformedInputError(f"Cannot parse {path}: {e}", field=path) from e


def load_config(path: Optional[str]) -> ConfigManager:
    if path:
        return ConfigManager(path)
    manager_path = Path.cwd() / "config" / "valuation.yaml"
    if manager_path.exists():
        return ConfigManager(manager_path)
    try:
        return ConfigManager()
    except FileNotFoundError:
        return ConfigManager(config_dict={})


def parse_trades(document: Any) -> list[Trade]:
    rows = document.get("trades") if isinstance(document, dict) else document
    if not isinstance(rows, list):
        raise MalformedInputError("Trades file must hold a list of trades or a `trades` list", field="trades")
    return [Trade.from_dict(row) for row in rows]


def parse_prices(document: Any) -> dict[str, Any]:
    prices = document.get("prices", document) if isinstance(document, dict) else None
    if not isinstance(prices, dict):
        raise MalformedInputError("Prices file must map symbols to prices", field="prices")
    return prices


def print_valuation(snapshot: ValuationSnapshot) -> None:
    """Print a human readable valuation."""
    pnl = format_pnl_with_sign(snapshot.unrealized_pnl_eur)
    print(f"Mode:                 {snapshot.mode.value if snapshot.mode else '-'}")
    print(f"Cash:                 {format_currency(snapshot.cash_eur)}")
    print(f"Open positions value: {format_currency(snapshot.open_positions_value_eur)}")
    print(f"Unrealized P&L:       {pnl['sign']}{pnl['value']} ({pnl['label']})")
    print(f"Gas spent:            {format_currency(snapshot.gas_spent_eur)}")
    print(f"Total value:          {format_currency(snapshot.total_portfolio_value_eur)}")
    if snapshot.total_pnl_eur is not None:
        print(
            f"Total P&L:            {format_currency(snapshot.total_pnl_eur)} "
            f"({format_percentage(snapshot.total_pnl_pct)})"
        )
    for position in snapshot.positions:
        if position.is_priced:
            print(
                f"  {position.symbol:<8} {position.amount:.8f} @ {format_currency(position.live_price)} "
                f"= {format_currency(position.live_value)} pnl {format_currency(position.unrealized_pnl)}"
            )
        else:
            print(f"  {position.symbol:<8} {position.amount:.8f} NO PRICE")
    if snapshot.has_missing_prices:
        print(f"WARNING: partial valuation, no live price for {', '.join(snapshot.missing_symbols)}")


def run_valuate(args: argparse.Namespace, config: ConfigManager) -> int:
    mode = TradingMode.parse(args.mode)
    trades = parse_trades(load_document(args.trades))
    prices = parse_prices(load_document(args.prices))

    engine_config = config.engine_config
    gas_per_tx = args.gas_per_tx
    if gas_per_tx is None:
        gas = engine_config.valuation.gas_per_tx_eur
        gas_per_tx = gas.test if mode.is_test else gas.real

    aggregates = TradeLedgerAggregator().aggregate(trades, mode=mode)
    snapshot = ValuationCalculator(quote_currency=engine_config.valuation.quote_currency).compute_valuation(
        args.cash,
        aggregates,
        prices,
        args.tx_count if args.tx_count is not None else len(trades),
        gas_per_tx,
        starting_capital_eur=args.starting_capital,
        mode=mode,
    )

    if args.json:
        print(json.dumps(snapshot.to_dict(), indent=2))
    else:
        print_valuation(snapshot)
    return 0


def run_readiness(args: argparse.Namespace) -> int:
    evaluation = FundingReadinessStateMachine().evaluate(
        load_document(args.prerequisites), account_id=args.account
    )
    if args.json:
        print(json.dumps(evaluation.to_dict(), indent=2))
    else:
        print(f"State: {evaluation.state.value}")
        if evaluation.blockers:
            print(f"Blockers: {', '.join(evaluation.blockers)}")
        if evaluation.panic_active:
            print("Panic halt is active; clearing it requires explicit confirmation")
        if evaluation.error:
            print(f"Error: {evaluation.error}")

    if evaluation.state is ReadinessState.READY:
        return EXIT_READY
    if evaluation.state is ReadinessState.ERROR:
        return EXIT_ERROR
    return EXIT_NOT_READY


def build_fixture_service(document: Any, config: ConfigManager) -> ValuationService:
    """Build a service over in-memory sources described by a fixtures file.

    Layout::

        accounts:
          acct-1:
            test: {trades: [...], cash_eur: 1000, starting_capital_eur: 1000}
            real: {trades: [...], cash_eur: 0}
            wallet: {address: ..., balances: {...}, total_value_eur: ...}
            prerequisites: {checks: {...}, panic_active: false}
        prices: {BTC-EUR: 42000}   # optional, live Coinbase prices otherwise
    """
    if not isinstance(document, dict) or not isinstance(document.get("accounts"), dict):
        raise MalformedInputError("Fixtures file must contain an `accounts` mapping", field="accounts")

    engine_config = config.engine_config
    ledgers = {}
    wallets = {}
    prerequisites = {}
    for account_id, account in document["accounts"].items():
        account_id = str(account_id)
        if not isinstance(account, dict):
            raise MalformedInputError(
                f"Fixture account {account_id} must be a mapping, got {type(account).__name__}",
                field=f"accounts.{account_id}",
            )
        for mode in TradingMode:
            ledger = account.get(mode.value)
            if ledger is None:
                continue
            trades = tuple(parse_trades(ledger))
            ledgers[(account_id, mode)] = LedgerState(
                open_trades=trades,
                cash_eur=float(ledger.get("cash_eur", 0.0)),
                tx_count=int(ledger.get("tx_count", len(trades))),
                starting_capital_eur=ledger.get("starting_capital_eur"),
                mode=mode,
            )
        if "wallet" in account:
            wallets[account_id] = account["wallet"]
        if "prerequisites" in account:
            prerequisites[account_id] = account["prerequisites"]

    if "prices" in document:
        quotes = {}
        for key, value in parse_prices(document).items():
            quote = coerce_quote(key, value)
            if quote is not None:
                quotes[key] = quote
        price_feed = StaticPriceFeed(quotes=quotes)
    else:
        price_feed = CoinbaseTickerPriceFeed(
            engine_config.price_feed, quote_currency=engine_config.valuation.quote_currency
        )

    return ValuationService(
        StaticLedgerSource(ledgers=ledgers),
        price_feed,
        wallet_source=StaticWalletSource(payloads=wallets),
        prerequisite_source=StaticPrerequisiteSource(responses=prerequisites),
        config=engine_config,
    )


def run_serve(args: argparse.Namespace, config: ConfigManager) -> int:
    from ..serve import ValuationServer

    service = build_fixture_service(load_document(args.fixtures), config)
    server_config = config.engine_config.server
    server = ValuationServer(
        service,
        host=args.host or server_config.host,
        port=args.port or server_config.port,
    )
    asyncio.run(server.start_server())
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if args.log_level:
        setup_logging(level=args.log_level)
    else:
        setup_logging_from_config(config.engine_config.logging.model_dump())

    try:
        if args.command == "valuate":
            return run_valuate(args, config)
        if args.command == "readiness":
            return run_readiness(args)
        if args.command == "serve":
            return run_serve(args, config)
    except FileNotFoundError as e:
        print(f"❌ File not found: {e.filename or e}", file=sys.stderr)
        return EXIT_ERROR
    except ValuationEngineError as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user")
        return 0

    parser.error(f"Unknown command: {args.command}")
    return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
