"""
Crypto Valuation - portfolio valuation and funding-readiness engine.

Values a trade ledger against live prices, reconciles the result with an
on-chain wallet balance, and gates live trading behind a readiness check.
"""

__version__ = "0.1.0"

from .core.config_manager import ConfigManager
from .core.logging_utils import setup_logging
from .core.utils import get_version

__all__ = [
    "ConfigManager",
    "setup_logging",
    "get_version",
]
