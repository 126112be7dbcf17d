"""
Exception types raised by the valuation engine.

Missing data (an unpriced symbol, a partial wallet view) is never an
exception; it is reported through flags on the result objects. Only
malformed input, unavailable upstreams and refused live actions raise.
"""

from typing import Any, Optional


class ValuationEngineError(Exception):
    """Base class for all engine errors."""
    pass


class MalformedInputError(ValuationEngineError, ValueError):
    """Raised when input data is structurally or numerically invalid."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class ModeMixingError(MalformedInputError):
    """Raised when test-mode and real-mode data meet in one computation."""
    pass


class PrerequisiteShapeError(MalformedInputError):
    """Raised when a prerequisite response fails shape validation."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message, field="prerequisites", value=raw)
        self.raw = raw


class UpstreamUnavailableError(ValuationEngineError):
    """Raised when a source failed and there is no previous snapshot to serve."""

    def __init__(self, source: str, account_id: str, cause: Optional[BaseException] = None):
        message = f"{source} unavailable for account {account_id}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.source = source
        self.account_id = account_id
        self.cause = cause


class LiveTradingBlockedError(ValuationEngineError):
    """Raised by the live-trading gate when readiness is not READY."""

    def __init__(self, account_id: str, evaluation: Any):
        state = getattr(evaluation, "state", None)
        state_name = getattr(state, "value", state)
        detail = getattr(evaluation, "error", None) or ", ".join(
            getattr(evaluation, "blockers", []) or []
        )
        if getattr(evaluation, "panic_active", False):
            detail = f"{detail}, panic active" if detail else "panic active"
        message = f"Live trading blocked for account {account_id}: state={state_name}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.account_id = account_id
        self.evaluation = evaluation


class PanicClearRejectedError(ValuationEngineError):
    """Raised when a panic clear is requested without explicit confirmation."""
    pass
