"""
Unit tests for the live-trading gate.
"""

import asyncio
import copy
from unittest.mock import AsyncMock, Mock

import pytest

from crypto_valuation.core.exceptions import LiveTradingBlockedError, PanicClearRejectedError
from crypto_valuation.feeds.base import PrerequisiteSource, StaticPrerequisiteSource
from crypto_valuation.live.gate import LiveTradingGate
from crypto_valuation.live.readiness import ReadinessState

READY_RESPONSE = {
    "ok": True,
    "checks": {"wallet_exists": True, "has_portfolio_capital": True, "rules_accepted": True},
    "panic_active": False,
}


def response(**changes):
    payload = copy.deepcopy(READY_RESPONSE)
    for key, value in changes.items():
        if key in payload["checks"]:
            payload["checks"][key] = value
        else:
            payload[key] = value
    return payload


class TestLiveTradingGate:
    """Test LiveTradingGate functionality."""

    def test_ready_account_passes(self):
        gate = LiveTradingGate(StaticPrerequisiteSource(responses={"acct-1": response()}))

        evaluation = asyncio.run(gate.ensure_ready("acct-1"))

        assert evaluation.state is ReadinessState.READY

    def test_not_ready_account_blocked(self):
        gate = LiveTradingGate(StaticPrerequisiteSource(responses={"acct-1": response(wallet_exists=False)}))

        with pytest.raises(LiveTradingBlockedError) as exc_info:
            asyncio.run(gate.ensure_ready("acct-1"))

        assert exc_info.value.evaluation.state is ReadinessState.NO_WALLET
        assert "wallet_exists" in str(exc_info.value)

    def test_panic_blocks_with_reason(self):
        gate = LiveTradingGate(StaticPrerequisiteSource(responses={"acct-1": response(panic_active=True)}))

        with pytest.raises(LiveTradingBlockedError) as exc_info:
            asyncio.run(gate.ensure_ready("acct-1"))

        assert "panic active" in str(exc_info.value)

    def test_unreachable_source_fails_closed(self):
        source = Mock(spec=PrerequisiteSource)
        source.fetch_prerequisites = AsyncMock(side_effect=ConnectionError("timeout"))
        gate = LiveTradingGate(source)

        evaluation = asyncio.run(gate.evaluate("acct-1"))
        assert evaluation.state is ReadinessState.ERROR
        assert "timeout" in evaluation.error

        with pytest.raises(LiveTradingBlockedError):
            asyncio.run(gate.ensure_ready("acct-1"))

    def test_malformed_response_fails_closed(self):
        payload = response()
        del payload["panic_active"]
        gate = LiveTradingGate(StaticPrerequisiteSource(responses={"acct-1": payload}))

        with pytest.raises(LiveTradingBlockedError) as exc_info:
            asyncio.run(gate.ensure_ready("acct-1"))

        assert exc_info.value.evaluation.state is ReadinessState.ERROR

    def test_rederived_on_every_check(self):
        source = StaticPrerequisiteSource(responses={"acct-1": response()})
        gate = LiveTradingGate(source)

        assert asyncio.run(gate.evaluate("acct-1")).state is ReadinessState.READY
        source.responses["acct-1"] = response(rules_accepted=False)
        assert asyncio.run(gate.evaluate("acct-1")).state is ReadinessState.NO_CAPITAL

    def test_concurrent_checks_share_one_fetch(self):
        calls = []

        async def slow_fetch(account_id):
            calls.append(account_id)
            await asyncio.sleep(0.01)
            return response()

        source = Mock(spec=PrerequisiteSource)
        source.fetch_prerequisites = AsyncMock(side_effect=slow_fetch)
        gate = LiveTradingGate(source)

        async def scenario():
            first, second = await asyncio.gather(gate.evaluate("acct-1"), gate.evaluate("acct-1"))
            third = await gate.evaluate("acct-1")
            return first, second, third

        first, second, third = asyncio.run(scenario())

        assert first is second
        assert third is not first
        assert calls == ["acct-1", "acct-1"]

    def test_clear_panic_requires_confirmation(self):
        source = StaticPrerequisiteSource(responses={"acct-1": response(panic_active=True)})
        gate = LiveTradingGate(source)

        with pytest.raises(PanicClearRejectedError):
            asyncio.run(gate.clear_panic("acct-1", confirmed=False, operator="ops"))
        with pytest.raises(PanicClearRejectedError):
            asyncio.run(gate.clear_panic("acct-1", confirmed="yes", operator="ops"))
        with pytest.raises(PanicClearRejectedError):
            asyncio.run(gate.clear_panic("acct-1", confirmed=True, operator="  "))

        assert source.responses["acct-1"]["panic_active"] is True

    def test_clear_panic_confirmed(self):
        source = StaticPrerequisiteSource(responses={"acct-1": response(panic_active=True)})
        gate = LiveTradingGate(source)

        evaluation = asyncio.run(gate.clear_panic("acct-1", confirmed=True, operator="ops"))

        assert evaluation.state is ReadinessState.READY
        assert source.responses["acct-1"]["panic_active"] is False

    def test_live_check_never_joins_an_older_fetch(self):
        class SlowSource(StaticPrerequisiteSource):
            async def fetch_prerequisites(self, account_id):
                payload = copy.deepcopy(self.responses[account_id])
                await asyncio.sleep(0.05)
                return payload

        source = SlowSource(responses={"acct-1": response()})
        gate = LiveTradingGate(source)

        async def scenario():
            dashboard = asyncio.ensure_future(gate.evaluate("acct-1"))
            await asyncio.sleep(0)
            source.responses["acct-1"] = response(panic_active=True)
            with pytest.raises(LiveTradingBlockedError) as exc_info:
                await gate.ensure_ready("acct-1")
            return await dashboard, exc_info.value

        stale, blocked = asyncio.run(scenario())

        assert stale.state is ReadinessState.READY
        assert blocked.evaluation.state is ReadinessState.NO_CAPITAL
        assert blocked.evaluation.panic_active is True
