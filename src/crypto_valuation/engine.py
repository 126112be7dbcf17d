"""
Account-scoped valuation service.

Threads (account_id, mode) explicitly through every call, keeps one
poller per source and account, and hands the pure components one
consistent snapshot of each input.
"""

import time
from typing import Callable, Iterable, Optional, Union

from .core.config_schema import EngineConfig, SourcePollingConfig
from .core.exceptions import LiveTradingBlockedError, UpstreamUnavailableError
from .core.logging_utils import LoggerMixin, event_message
from .feeds.base import LedgerSource, LedgerState, PrerequisiteSource, PriceFeed, WalletBalanceSource
from .feeds.poller import PolledSnapshot, PollerRegistry, SnapshotPoller
from .live.gate import LiveTradingGate
from .live.readiness import FundingReadinessStateMachine, ReadinessEvaluation
from .portfolio.aggregator import TradeLedgerAggregator
from .portfolio.models import TradingMode, ValuationSnapshot
from .portfolio.valuation import ValuationCalculator
from .reconciliation.reconciler import ReconciliationResult, WalletRealityReconciler
from .reconciliation.wallet import WalletBalanceSnapshot, parse_wallet_balance


class ValuationService(LoggerMixin):
    """GetValuation / GetReconciliation / GetReadiness for many accounts."""

    def __init__(
        self,
        ledger_source: LedgerSource,
        price_feed: PriceFeed,
        wallet_source: Optional[WalletBalanceSource] = None,
        prerequisite_source: Optional[PrerequisiteSource] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or EngineConfig()
        self.ledger_source = ledger_source
        self.price_feed = price_feed
        self.wallet_source = wallet_source
        self.prerequisite_source = prerequisite_source
        self._clock = clock

        self.aggregator = TradeLedgerAggregator()
        self.calculator = ValuationCalculator(quote_currency=self.config.valuation.quote_currency)
        self.reconciler = WalletRealityReconciler(
            token_allowlist=self.config.reconciliation.wallet_token_allowlist,
            materiality_eur=self.config.reconciliation.materiality_eur,
        )
        self.state_machine = FundingReadinessStateMachine()
        self.gate = (
            LiveTradingGate(prerequisite_source, self.state_machine)
            if prerequisite_source is not None
            else None
        )
        self.pollers = PollerRegistry()
        self._price_symbols: dict[tuple[str, str], set[str]] = {}

    def gas_per_tx_eur(self, mode: TradingMode) -> float:
        gas = self.config.valuation.gas_per_tx_eur
        return gas.test if mode.is_test else gas.real

    def _make_poller(self, name: str, fetch, limits: SourcePollingConfig) -> SnapshotPoller:
        return SnapshotPoller(
            name,
            fetch,
            min_interval_s=limits.min_interval_s,
            backoff_base_s=limits.backoff_base_s,
            max_backoff_s=limits.max_backoff_s,
            clock=self._clock,
        )

    def _ledger_poller(self, account_id: str, mode: TradingMode) -> SnapshotPoller:
        async def fetch() -> LedgerState:
            return await self.ledger_source.fetch_ledger(account_id, mode)

        return self.pollers.get_or_create(
            "ledger",
            account_id,
            mode.value,
            lambda: self._make_poller(f"ledger:{account_id}:{mode.value}", fetch, self.config.polling.ledger),
        )

    def _price_poller(self, account_id: str, mode: TradingMode) -> SnapshotPoller:
        symbols = self._price_symbols.setdefault((account_id, mode.value), set())

        async def fetch():
            return await self.price_feed.fetch_prices(sorted(symbols))

        return self.pollers.get_or_create(
            "prices",
            account_id,
            mode.value,
            lambda: self._make_poller(f"prices:{account_id}:{mode.value}", fetch, self.config.polling.prices),
        )

    def _wallet_poller(self, account_id: str) -> SnapshotPoller:
        covered = tuple(self.config.reconciliation.wallet_token_allowlist)

        async def fetch() -> WalletBalanceSnapshot:
            payload = await self.wallet_source.fetch_balance(account_id)
            return parse_wallet_balance(payload, covered_tokens=covered)

        return self.pollers.get_or_create(
            "wallet",
            account_id,
            None,
            lambda: self._make_poller(f"wallet:{account_id}", fetch, self.config.polling.wallet),
        )

    @staticmethod
    def _require(snapshot: Optional[PolledSnapshot], poller: SnapshotPoller, source: str, account_id: str):
        if snapshot is None:
            cause = RuntimeError(poller.last_error) if poller.last_error else None
            raise UpstreamUnavailableError(source, account_id, cause)
        return snapshot

    async def _poll_prices(
        self, account_id: str, mode: TradingMode, symbols: Iterable[str], refresh: bool
    ) -> Optional[PolledSnapshot]:
        poller = self._price_poller(account_id, mode)
        wanted = set(symbols)
        tracked = self._price_symbols[(account_id, mode.value)]
        new_symbols = wanted - tracked
        if new_symbols:
            tracked.update(new_symbols)
        snapshot = await poller.poll(force=refresh or bool(new_symbols))
        if snapshot is None and wanted:
            self._require(snapshot, poller, "prices", account_id)
        return snapshot

    async def get_valuation(
        self, account_id: str, mode: Union[TradingMode, str], refresh: bool = False
    ) -> ValuationSnapshot:
        """Value one account's ledger in one mode.

        Args:
            account_id: Account to value
            mode: "test" or "real"; never inferred
            refresh: Bypass the polling interval once for every source

        Raises:
            MalformedInputError: On malformed ledger data or mixed modes
            UpstreamUnavailableError: When a source failed and there is no previous snapshot
        """
        mode = TradingMode.parse(mode)
        ledger_poller = self._ledger_poller(account_id, mode)
        ledger_snapshot = self._require(
            await ledger_poller.poll(force=refresh), ledger_poller, "ledger", account_id
        )
        ledger: LedgerState = ledger_snapshot.value

        aggregates = self.aggregator.aggregate(ledger.open_trades, mode=mode)
        symbols = sorted(aggregate.symbol for aggregate in aggregates.values())
        price_snapshot = await self._poll_prices(account_id, mode, symbols, refresh)

        prices = price_snapshot.value if price_snapshot is not None else {}
        return self.calculator.compute_valuation(
            ledger.cash_eur,
            aggregates,
            prices,
            ledger.tx_count,
            self.gas_per_tx_eur(mode),
            starting_capital_eur=ledger.starting_capital_eur,
            mode=mode,
            as_of=ledger_snapshot.fetched_at,
            prices_as_of=price_snapshot.fetched_at if price_snapshot is not None else None,
            is_stale=ledger_snapshot.is_stale or bool(price_snapshot and price_snapshot.is_stale),
        )

    async def get_reconciliation(self, account_id: str, refresh: bool = False) -> ReconciliationResult:
        """Compare the real-money ledger value with the on-chain wallet.

        Raises:
            UpstreamUnavailableError: When no wallet source is configured or
                a source has never delivered a snapshot
        """
        if self.wallet_source is None:
            raise UpstreamUnavailableError("wallet", account_id, RuntimeError("no wallet source configured"))

        valuation = await self.get_valuation(account_id, TradingMode.REAL, refresh=refresh)
        wallet_poller = self._wallet_poller(account_id)
        wallet_snapshot = self._require(
            await wallet_poller.poll(force=refresh), wallet_poller, "wallet", account_id
        )

        return self.reconciler.reconcile(
            valuation.total_portfolio_value_eur,
            wallet_snapshot.value,
            open_position_symbols=[position.symbol for position in valuation.positions],
            is_stale=valuation.is_stale or wallet_snapshot.is_stale,
        )

    async def get_readiness(self, account_id: str) -> ReadinessEvaluation:
        """Freshly derived readiness. Source failures yield ERROR, never an exception."""
        if self.gate is None:
            return self.state_machine.error("no prerequisite source configured", account_id=account_id)
        return await self.gate.evaluate(account_id)

    async def ensure_live_ready(self, account_id: str) -> ReadinessEvaluation:
        if self.gate is None:
            raise LiveTradingBlockedError(
                account_id, self.state_machine.error("no prerequisite source configured", account_id=account_id)
            )
        return await self.gate.ensure_ready(account_id)

    def watch_account(self, account_id: str, modes: Iterable[Union[TradingMode, str]] = (TradingMode.REAL,)) -> int:
        """Start background polling for an account. Must run inside an event loop.

        Returns:
            Number of pollers started
        """
        pollers = []
        for mode in modes:
            mode = TradingMode.parse(mode)
            pollers.append(self._ledger_poller(account_id, mode))
            pollers.append(self._price_poller(account_id, mode))
        if self.wallet_source is not None:
            pollers.append(self._wallet_poller(account_id))
        for poller in pollers:
            poller.start()
        self.logger.info(event_message("ACCOUNT_WATCH", account=account_id, pollers=len(pollers)))
        return len(pollers)

    def close_account(self, account_id: str) -> int:
        """Cancel every poll scheduled for an account and drop its cached snapshots."""
        for key in [key for key in self._price_symbols if key[0] == account_id]:
            del self._price_symbols[key]
        return self.pollers.close_account(account_id)

    async def aclose(self) -> None:
        self.pollers.close_all()
        self._price_symbols.clear()
        await self.price_feed.close()
