"""
Ledger versus on-chain wallet reconciliation.
"""

from .reconciler import Coverage, ReconciliationResult, WalletRealityReconciler
from .wallet import WalletBalanceSnapshot, WalletTokenBalance, parse_wallet_balance

__all__ = [
    "Coverage",
    "ReconciliationResult",
    "WalletBalanceSnapshot",
    "WalletRealityReconciler",
    "WalletTokenBalance",
    "parse_wallet_balance",
]
