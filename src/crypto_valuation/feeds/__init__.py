"""
Upstream sources and polling.
"""

from .base import (
    LedgerSource,
    LedgerState,
    PrerequisiteSource,
    PriceFeed,
    StaticLedgerSource,
    StaticPrerequisiteSource,
    StaticPriceFeed,
    StaticWalletSource,
    WalletBalanceSource,
)
from .coinbase import CoinbaseTickerPriceFeed, FailedSymbol
from .poller import PolledSnapshot, PollerRegistry, SingleFlight, SnapshotPoller

__all__ = [
    "CoinbaseTickerPriceFeed",
    "FailedSymbol",
    "LedgerSource",
    "LedgerState",
    "PolledSnapshot",
    "PollerRegistry",
    "PrerequisiteSource",
    "PriceFeed",
    "SingleFlight",
    "SnapshotPoller",
    "StaticLedgerSource",
    "StaticPrerequisiteSource",
    "StaticPriceFeed",
    "StaticWalletSource",
    "WalletBalanceSource",
]
