"""
Interfaces of the upstream sources the engine polls.

The engine owns none of these systems; implementations wrap a database,
an exchange API or an RPC endpoint and hand back already-fetched data.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..core.logging_utils import LoggerMixin
from ..portfolio.models import PriceQuote, Trade, TradingMode


@dataclass(frozen=True)
class LedgerState:
    """Ledger view of one account in one mode."""

    open_trades: tuple[Trade, ...]
    cash_eur: float
    tx_count: int
    starting_capital_eur: Optional[float] = None
    mode: Optional[TradingMode] = None

    @property
    def open_symbols(self) -> list[str]:
        return sorted({trade.symbol for trade in self.open_trades})


class LedgerSource(ABC, LoggerMixin):
    """Source of ledger trades and balances."""

    name = "ledger"

    @abstractmethod
    async def fetch_ledger(self, account_id: str, mode: TradingMode) -> LedgerState:
        """Return open, non-corrupted trades plus cash for one account and mode.

        Raises:
            Exception: Any failure; the poller turns it into a stale fallback
        """
        pass


class PriceFeed(ABC, LoggerMixin):
    """Source of live market prices."""

    name = "prices"

    @abstractmethod
    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, PriceQuote]:
        """Return quotes keyed by pair or base symbol. Symbols without a quote are omitted."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass


class WalletBalanceSource(ABC, LoggerMixin):
    """Source of on-chain wallet balances."""

    name = "wallet"

    @abstractmethod
    async def fetch_balance(self, account_id: str) -> dict[str, Any]:
        """Return the raw wallet-balance payload of the account's external wallet."""
        pass


class PrerequisiteSource(ABC, LoggerMixin):
    """Source of the live-trading prerequisite facts."""

    name = "prerequisites"

    @abstractmethod
    async def fetch_prerequisites(self, account_id: str) -> dict[str, Any]:
        """Return the raw prerequisite response for an account."""
        pass

    @abstractmethod
    async def clear_panic(self, account_id: str, operator: str) -> None:
        """Clear an active panic halt. Callers must have obtained confirmation."""
        pass


@dataclass
class StaticLedgerSource(LedgerSource):
    """In-memory ledger keyed by (account_id, mode)."""

    ledgers: dict[tuple[str, TradingMode], LedgerState] = field(default_factory=dict)

    async def fetch_ledger(self, account_id: str, mode: TradingMode) -> LedgerState:
        try:
            return self.ledgers[(account_id, TradingMode.parse(mode))]
        except KeyError:
            raise LookupError(f"No {TradingMode.parse(mode).value} ledger for account {account_id}")


@dataclass
class StaticPriceFeed(PriceFeed):
    """In-memory price feed returning a fixed quote map."""

    quotes: dict[str, PriceQuote] = field(default_factory=dict)

    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, PriceQuote]:
        return dict(self.quotes)


@dataclass
class StaticWalletSource(WalletBalanceSource):
    """In-memory wallet payloads keyed by account."""

    payloads: dict[str, dict[str, Any]] = field(default_factory=dict)

    async def fetch_balance(self, account_id: str) -> dict[str, Any]:
        try:
            return dict(self.payloads[account_id])
        except KeyError:
            raise LookupError(f"No wallet registered for account {account_id}")


@dataclass
class StaticPrerequisiteSource(PrerequisiteSource):
    """In-memory prerequisite responses keyed by account."""

    responses: dict[str, dict[str, Any]] = field(default_factory=dict)

    async def fetch_prerequisites(self, account_id: str) -> dict[str, Any]:
        try:
            return dict(self.responses[account_id])
        except KeyError:
            raise LookupError(f"No prerequisite record for account {account_id}")

    async def clear_panic(self, account_id: str, operator: str) -> None:
        response = self.responses.get(account_id)
        if response is None:
            raise LookupError(f"No prerequisite record for account {account_id}")
        self.responses[account_id] = {**response, "panic_active": False}
        self.logger.info(f"PANIC_CLEARED: account={account_id} operator={operator}")
