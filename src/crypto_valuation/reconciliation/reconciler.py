"""
Wallet reality reconciliation.

Compares the ledger-derived portfolio value with the independently observed
on-chain wallet value and reports the signed drift. Diagnostic only: the
reconciler never corrects the ledger, and trading decisions always use the
ledger value.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..core.config_schema import DEFAULT_WALLET_TOKENS
from ..core.exceptions import MalformedInputError
from ..core.logging_utils import LoggerMixin, event_message
from ..core.symbols import position_key
from ..core.utils import format_currency, format_percentage, require_finite, safe_pct
from .wallet import WalletBalanceSnapshot

DEFAULT_MATERIALITY_EUR = 0.01


class Coverage(str, Enum):
    """How much of the ledger's exposure the wallet snapshot can see."""

    FULL = "full"
    PARTIAL = "partial"


@dataclass(frozen=True)
class ReconciliationResult:
    """Signed drift between wallet reality and the ledger.

    `drift_eur > 0`: the wallet holds more than the ledger accounts for.
    `drift_eur < 0`: the ledger overstates what the wallet holds.
    """

    drift_eur: float
    drift_pct: float
    is_meaningful: bool
    coverage: Coverage
    ledger_total_eur: float
    wallet_total_eur: float
    uncovered_symbols: list[str] = field(default_factory=list)
    wallet_fetched_at: Optional[datetime] = None
    materiality_eur: float = DEFAULT_MATERIALITY_EUR
    is_stale: bool = False

    @property
    def is_partial(self) -> bool:
        return self.coverage is Coverage.PARTIAL

    @property
    def direction(self) -> str:
        if not self.is_meaningful:
            return "none"
        return "wallet_above_ledger" if self.drift_eur > 0 else "ledger_above_wallet"

    def describe(self) -> str:
        """Human-readable drift line; sub-threshold drift reads as "no drift"."""
        if not self.is_meaningful:
            text = "no drift"
        else:
            sign = "+" if self.drift_eur > 0 else ""
            text = (
                f"drift {sign}{format_currency(self.drift_eur)} "
                f"({format_percentage(self.drift_pct)})"
            )
        if self.is_partial:
            text += f" [partial wallet view, not covered: {', '.join(self.uncovered_symbols)}]"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "drift_eur": self.drift_eur,
            "drift_pct": self.drift_pct,
            "is_meaningful": self.is_meaningful,
            "coverage": self.coverage.value,
            "uncovered_symbols": list(self.uncovered_symbols),
            "ledger_total_eur": self.ledger_total_eur,
            "wallet_total_eur": self.wallet_total_eur,
            "wallet_fetched_at": self.wallet_fetched_at.isoformat() if self.wallet_fetched_at else None,
            "direction": self.direction,
            "description": self.describe(),
            "is_stale": self.is_stale,
        }


class WalletRealityReconciler(LoggerMixin):
    """Computes drift between a ledger valuation and a wallet balance snapshot."""

    def __init__(
        self,
        token_allowlist: Optional[Iterable[str]] = None,
        materiality_eur: float = DEFAULT_MATERIALITY_EUR,
    ):
        tokens = token_allowlist if token_allowlist is not None else DEFAULT_WALLET_TOKENS
        self.token_allowlist = frozenset(position_key(token) for token in tokens)
        self.materiality_eur = require_finite(materiality_eur, "materiality_eur")
        if self.materiality_eur <= 0:
            raise MalformedInputError("materiality_eur must be > 0", field="materiality_eur")

    def uncovered_symbols(self, open_position_symbols: Iterable[str]) -> list[str]:
        """Held symbols the wallet snapshot cannot see, sorted and de-duplicated."""
        return sorted(
            {position_key(symbol) for symbol in open_position_symbols}
            - self.token_allowlist
        )

    def reconcile(
        self,
        ledger_total_eur: float,
        wallet_snapshot: WalletBalanceSnapshot,
        open_position_symbols: Iterable[str] = (),
        is_stale: bool = False,
    ) -> ReconciliationResult:
        """Compare ledger value with wallet value.

        Args:
            ledger_total_eur: Authoritative ledger portfolio value
            wallet_snapshot: On-chain balance snapshot (one consistent fetch)
            open_position_symbols: Symbols the ledger currently holds
            is_stale: True when either input is a fallback snapshot

        Returns:
            ReconciliationResult

        Raises:
            MalformedInputError: On non-finite totals
        """
        ledger_total = require_finite(ledger_total_eur, "ledger_total_eur")
        wallet_total = require_finite(wallet_snapshot.total_value_eur, "wallet_total_value_eur")

        drift_eur = wallet_total - ledger_total
        drift_pct = safe_pct(drift_eur, ledger_total)
        # Subtraction noise must not push an exact threshold drift below it.
        is_meaningful = round(abs(drift_eur), 9) >= self.materiality_eur

        uncovered = self.uncovered_symbols(open_position_symbols)
        coverage = Coverage.PARTIAL if uncovered else Coverage.FULL

        result = ReconciliationResult(
            drift_eur=drift_eur,
            drift_pct=drift_pct,
            is_meaningful=is_meaningful,
            coverage=coverage,
            ledger_total_eur=ledger_total,
            wallet_total_eur=wallet_total,
            uncovered_symbols=uncovered,
            wallet_fetched_at=wallet_snapshot.fetched_at,
            materiality_eur=self.materiality_eur,
            is_stale=is_stale,
        )

        self.logger.info(
            event_message(
                "RECONCILIATION",
                address=wallet_snapshot.address,
                ledger=f"{ledger_total:.2f}",
                wallet=f"{wallet_total:.2f}",
                drift=f"{drift_eur:.4f}",
                meaningful=is_meaningful,
                coverage=coverage.value,
            )
        )
        if uncovered:
            self.logger.warning(
                event_message("RECONCILIATION_PARTIAL", uncovered=",".join(uncovered))
            )
        return result
