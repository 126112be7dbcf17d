"""
Funding readiness and the live-trading gate.
"""

from .gate import LiveTradingGate
from .readiness import (
    FundingReadinessStateMachine,
    PrerequisiteFacts,
    ReadinessEvaluation,
    ReadinessState,
    parse_prerequisites,
)

__all__ = [
    "FundingReadinessStateMachine",
    "LiveTradingGate",
    "PrerequisiteFacts",
    "ReadinessEvaluation",
    "ReadinessState",
    "parse_prerequisites",
]
