"""
Live-trading gate.

Every live action is preceded by its own prerequisite fetch. Nothing is
cached between checks. Concurrent read-only checks for one account share
the single outstanding fetch.
"""

from typing import Optional

from ..core.exceptions import LiveTradingBlockedError, PanicClearRejectedError
from ..core.logging_utils import LoggerMixin, event_message
from ..feeds.base import PrerequisiteSource
from ..feeds.poller import SingleFlight
from .readiness import FundingReadinessStateMachine, ReadinessEvaluation, ReadinessState


class LiveTradingGate(LoggerMixin):
    """Fail-closed gate in front of any real-money order."""

    def __init__(
        self,
        prerequisite_source: PrerequisiteSource,
        state_machine: Optional[FundingReadinessStateMachine] = None,
    ):
        self.source = prerequisite_source
        self.state_machine = state_machine or FundingReadinessStateMachine()
        self._flights = SingleFlight()

    async def evaluate(self, account_id: str) -> ReadinessEvaluation:
        """Fetch prerequisites and derive readiness. Never raises for source failures.

        Read-only checks for one account share the outstanding fetch.
        """
        return await self._flights.do(account_id, lambda: self._evaluate(account_id))

    async def _evaluate(self, account_id: str) -> ReadinessEvaluation:
        try:
            payload = await self.source.fetch_prerequisites(account_id)
        except Exception as e:
            return self.state_machine.error(
                f"prerequisite source unreachable: {type(e).__name__}: {e}", account_id=account_id
            )
        return self.state_machine.evaluate(payload, account_id=account_id)

    async def ensure_ready(self, account_id: str) -> ReadinessEvaluation:
        """Re-derive readiness from a fetch started by this call and refuse unless READY.

        Never joins an outstanding read-only fetch, whose facts may predate
        a panic or a withdrawal.

        Raises:
            LiveTradingBlockedError: If the derived state is anything but READY
        """
        evaluation = await self._evaluate(account_id)
        if evaluation.state is not ReadinessState.READY:
            self.logger.warning(
                event_message(
                    "LIVE_TRADING_BLOCKED",
                    account=account_id,
                    state=evaluation.state.value,
                    reason=evaluation.error or ",".join(evaluation.blockers) or "panic_active",
                )
            )
            raise LiveTradingBlockedError(account_id, evaluation)
        return evaluation

    async def clear_panic(self, account_id: str, confirmed: bool, operator: str) -> ReadinessEvaluation:
        """Clear an active panic halt after explicit confirmation.

        Returns:
            Readiness evaluated after the clear

        Raises:
            PanicClearRejectedError: If `confirmed` is not True or no operator is named
        """
        if confirmed is not True:
            raise PanicClearRejectedError(f"Panic clear for account {account_id} requires explicit confirmation")
        if not operator or not operator.strip():
            raise PanicClearRejectedError(f"Panic clear for account {account_id} requires an operator")

        await self.source.clear_panic(account_id, operator.strip())
        self.logger.warning(event_message("PANIC_CLEAR", account=account_id, operator=operator.strip()))
        return await self._evaluate(account_id)
