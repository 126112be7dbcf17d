"""
Core utilities for the valuation engine.
"""

from .config_manager import ConfigManager
from .config_schema import EngineConfig, validate_config_dict
from .logging_utils import LoggerMixin, setup_logging
from .utils import format_currency, format_percentage, get_version

__all__ = [
    "ConfigManager",
    "EngineConfig",
    "LoggerMixin",
    "format_currency",
    "format_percentage",
    "get_version",
    "setup_logging",
    "validate_config_dict",
]
