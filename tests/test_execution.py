import asyncio
import random

import pytest

from arbhawk.execution import ExecutionSimulator, ProbabilitySuccessPolicy, SuccessPolicy
from arbhawk.models import FailureReason, RiskConfig, TradeStatus, WalletState

from conftest import FixedSuccessPolicy, make_route

CONNECTED = WalletState(connected=True, address="W", balance=3.0)


class HangingPolicy(SuccessPolicy):
    async def confirm(self, route):
        await asyncio.sleep(60)
        return True


class ExplodingPolicy(SuccessPolicy):
    async def confirm(self, route):
        raise RuntimeError("rpc node unreachable")


def _simulator(logger, clock, policy, **kwargs):
    kwargs.setdefault('settlement_delay', 0)
    return ExecutionSimulator(logger, policy, rng=random.Random(5), clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_disconnected_wallet_fails_immediately(logger, clock):
    policy = FixedSuccessPolicy(True)
    sim = _simulator(logger, clock, policy, settlement_delay=30)
    outcome = await asyncio.wait_for(sim.execute(make_route(3.0), RiskConfig(), WalletState()), timeout=1)
    assert outcome.status is TradeStatus.FAILED
    assert outcome.reason is FailureReason.WALLET_DISCONNECTED
    assert outcome.realized_profit is None
    assert policy.calls == []


@pytest.mark.asyncio
async def test_oversized_route_fails_immediately(logger, clock):
    policy = FixedSuccessPolicy(True)
    sim = _simulator(logger, clock, policy, settlement_delay=30)
    route = make_route(3.0, entry_amount=1500.0)
    outcome = await asyncio.wait_for(sim.execute(route, RiskConfig(max_trade_amount=1000.0), CONNECTED), timeout=1)
    assert outcome.reason is FailureReason.EXCEEDS_MAX_TRADE_AMOUNT
    assert policy.calls == []


@pytest.mark.asyncio
async def test_success_realizes_profit_near_net(logger, clock):
    sim = _simulator(logger, clock, FixedSuccessPolicy(True))
    route = make_route(4.0, entry_amount=200.0)
    cfg = RiskConfig(max_slippage_pct=0.5)
    for _ in range(25):
        outcome = await sim.execute(route, cfg, CONNECTED)
        assert outcome.status is TradeStatus.COMPLETED
        assert abs(outcome.realized_profit - route.net_profit) <= 200.0 * 0.005
        assert outcome.tx_reference.startswith("tx")


@pytest.mark.asyncio
async def test_rejected_settlement(logger, clock):
    sim = _simulator(logger, clock, FixedSuccessPolicy(False))
    outcome = await sim.execute(make_route(4.0), RiskConfig(), CONNECTED)
    assert outcome.status is TradeStatus.FAILED
    assert outcome.reason is FailureReason.SETTLEMENT_REJECTED
    assert outcome.realized_profit is None


@pytest.mark.asyncio
async def test_settlement_wait_is_bounded(logger, clock):
    sim = _simulator(logger, clock, HangingPolicy(), settlement_timeout=0.05)
    outcome = await asyncio.wait_for(sim.execute(make_route(4.0), RiskConfig(), CONNECTED), timeout=2)
    assert outcome.reason is FailureReason.SETTLEMENT_TIMEOUT


@pytest.mark.asyncio
async def test_policy_error_becomes_failed_outcome(logger, clock):
    sim = _simulator(logger, clock, ExplodingPolicy())
    outcome = await sim.execute(make_route(4.0), RiskConfig(), CONNECTED)
    assert outcome.reason is FailureReason.SETTLEMENT_ERROR
    assert "unreachable" in outcome.detail


@pytest.mark.asyncio
async def test_concurrent_executions_leave_routes_untouched(logger, clock):
    sim = _simulator(logger, clock, FixedSuccessPolicy(True), settlement_delay=0.01)
    routes = [make_route(float(n), entry_amount=100.0 + n) for n in range(1, 6)]
    before = [(r.path, r.venues, r.entry_amount, r.net_profit, r.generated_at) for r in routes]
    outcomes = await asyncio.gather(*(sim.execute(r, RiskConfig(), CONNECTED) for r in routes))
    assert all(o.status is TradeStatus.COMPLETED for o in outcomes)
    assert [(r.path, r.venues, r.entry_amount, r.net_profit, r.generated_at) for r in routes] == before


@pytest.mark.asyncio
async def test_probability_policy_extremes():
    route = make_route(1.0)
    assert await ProbabilitySuccessPolicy(1.0, random.Random(1)).confirm(route)
    assert not await ProbabilitySuccessPolicy(0.0, random.Random(1)).confirm(route)
    with pytest.raises(ValueError):
        ProbabilitySuccessPolicy(1.5)
