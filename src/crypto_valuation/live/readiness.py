"""
Funding readiness state machine.

Readiness is a projection of four prerequisite facts, recomputed from the
prerequisite source on every check and never cached or hand-set:

    NO_WALLET -> NO_CAPITAL -> READY, with ERROR reachable from any state.

A prerequisite response that cannot be fetched or fails shape validation
always yields ERROR; the gate fails closed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, StrictBool, ValidationError

from ..core.exceptions import PrerequisiteShapeError
from ..core.logging_utils import LoggerMixin, event_message


class ReadinessState(str, Enum):
    """Live-trading readiness of an account."""

    NO_WALLET = "NO_WALLET"
    NO_CAPITAL = "NO_CAPITAL"
    READY = "READY"
    ERROR = "ERROR"


class PrerequisiteChecksPayload(BaseModel):
    """Checklist part of the prerequisite response; every field is required."""

    model_config = ConfigDict(extra="ignore")

    wallet_exists: StrictBool
    has_portfolio_capital: StrictBool
    rules_accepted: StrictBool


class PrerequisiteMetaPayload(BaseModel):
    """Informational part of the prerequisite response."""

    model_config = ConfigDict(extra="ignore")

    external_wallet_address: Optional[str] = None
    portfolio_balance_eur: Optional[float] = None


class PrerequisiteResponse(BaseModel):
    """Prerequisite source response.

    `ok` and `meta` are carried for diagnostics only; the readiness
    decision is derived from `checks` and `panic_active` alone.
    """

    model_config = ConfigDict(extra="ignore")

    checks: PrerequisiteChecksPayload
    panic_active: StrictBool
    ok: Optional[bool] = None
    meta: Optional[PrerequisiteMetaPayload] = None


@dataclass(frozen=True)
class PrerequisiteFacts:
    """The boolean tuple readiness is derived from."""

    wallet_exists: bool
    has_portfolio_capital: bool
    rules_accepted: bool
    panic_active: bool
    external_wallet_address: Optional[str] = None
    portfolio_balance_eur: Optional[float] = None

    def unmet_checks(self) -> list[str]:
        """Checklist items still open, in gate order. Panic is a status, not a checklist item."""
        unmet = []
        if not self.wallet_exists:
            unmet.append("wallet_exists")
        if not self.has_portfolio_capital:
            unmet.append("has_portfolio_capital")
        if not self.rules_accepted:
            unmet.append("rules_accepted")
        return unmet


def parse_prerequisites(payload: Any) -> PrerequisiteFacts:
    """Validate a prerequisite response and extract its facts.

    Raises:
        PrerequisiteShapeError: If the payload is not an object or any
            required boolean is missing or not a boolean
    """
    if isinstance(payload, PrerequisiteFacts):
        return payload
    if not isinstance(payload, dict):
        raise PrerequisiteShapeError(
            f"Prerequisite response must be an object, got {type(payload).__name__}", raw=payload
        )
    try:
        response = PrerequisiteResponse.model_validate(payload)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise PrerequisiteShapeError(f"Malformed prerequisite response: {problems}", raw=payload) from e

    meta = response.meta or PrerequisiteMetaPayload()
    return PrerequisiteFacts(
        wallet_exists=response.checks.wallet_exists,
        has_portfolio_capital=response.checks.has_portfolio_capital,
        rules_accepted=response.checks.rules_accepted,
        panic_active=response.panic_active,
        external_wallet_address=meta.external_wallet_address,
        portfolio_balance_eur=meta.portfolio_balance_eur,
    )


@dataclass(frozen=True)
class ReadinessEvaluation:
    """One readiness check result."""

    state: ReadinessState
    facts: Optional[PrerequisiteFacts] = None
    blockers: list[str] = field(default_factory=list)
    panic_active: Optional[bool] = None
    error: Optional[str] = None
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    account_id: Optional[str] = None

    @property
    def can_trade_live(self) -> bool:
        return self.state is ReadinessState.READY

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "state": self.state.value,
            "can_trade_live": self.can_trade_live,
            "blockers": list(self.blockers),
            "panic_active": self.panic_active,
            "error": self.error,
            "evaluated_at": self.evaluated_at.isoformat(),
            "facts": None
            if self.facts is None
            else {
                "wallet_exists": self.facts.wallet_exists,
                "has_portfolio_capital": self.facts.has_portfolio_capital,
                "rules_accepted": self.facts.rules_accepted,
                "panic_active": self.facts.panic_active,
            },
        }


class FundingReadinessStateMachine(LoggerMixin):
    """Derives ReadinessState from prerequisite facts."""

    def derive(self, facts: Optional[PrerequisiteFacts]) -> ReadinessState:
        """Transition function, evaluated in strict order.

        1. no facts (unreachable / malformed source) -> ERROR
        2. no external wallet                         -> NO_WALLET
        3. no portfolio capital                       -> NO_CAPITAL
        4. trading rules not accepted                 -> NO_CAPITAL
        5. panic active                               -> NO_CAPITAL
        6. otherwise                                  -> READY
        """
        if facts is None:
            return ReadinessState.ERROR
        if not facts.wallet_exists:
            return ReadinessState.NO_WALLET
        if not facts.has_portfolio_capital:
            return ReadinessState.NO_CAPITAL
        if not facts.rules_accepted:
            return ReadinessState.NO_CAPITAL
        if facts.panic_active:
            return ReadinessState.NO_CAPITAL
        return ReadinessState.READY

    def evaluate(self, payload: Any, account_id: Optional[str] = None) -> ReadinessEvaluation:
        """Validate a raw prerequisite response and derive readiness.

        Shape failures become an ERROR evaluation carrying the raw
        validation message rather than an exception.
        """
        try:
            facts = parse_prerequisites(payload)
        except PrerequisiteShapeError as e:
            return self.error(str(e), account_id=account_id)

        state = self.derive(facts)
        blockers = facts.unmet_checks()

        evaluation = ReadinessEvaluation(
            state=state,
            facts=facts,
            blockers=blockers,
            panic_active=facts.panic_active,
            account_id=account_id,
        )
        self.logger.info(
            event_message(
                "READINESS",
                account=account_id,
                state=state.value,
                blockers=",".join(blockers) or "none",
                panic_active=facts.panic_active,
            )
        )
        return evaluation

    def error(self, message: str, account_id: Optional[str] = None) -> ReadinessEvaluation:
        """ERROR evaluation for an unreachable or malformed prerequisite source."""
        self.logger.error(event_message("READINESS_ERROR", account=account_id, error=message))
        return ReadinessEvaluation(
            state=ReadinessState.ERROR,
            error=message,
            account_id=account_id,
        )


def derive(facts: Optional[PrerequisiteFacts]) -> ReadinessState:
    """Module-level shortcut for FundingReadinessStateMachine().derive."""
    return FundingReadinessStateMachine().derive(facts)
