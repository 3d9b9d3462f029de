import asyncio
import copy
import logging
import random
from typing import Optional, Sequence

import pytest

from arbhawk.config import DEFAULT_CONFIG
from arbhawk.diagnostics import DiagnosticAnalyzer
from arbhawk.engine import OpportunityEngine
from arbhawk.execution import ExecutionSimulator, SuccessPolicy
from arbhawk.ledger import TradeLedger
from arbhawk.market_engine import SnapshotProvider
from arbhawk.models import PairQuote, PairSpec, Route, Snapshot, Token
from arbhawk.risk_engine import RiskEngine
from arbhawk.strategy import FeeModel, OpportunityGenerator, RouteMixPolicy
from arbhawk.wallet import SimulatedWallet

SOL = Token("Solana", "SOL", "So11111111111111111111111111111111111111112")
USDC = Token("USD Coin", "USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
RAY = Token("Raydium", "RAY", "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R")
BTC = Token("Wrapped Bitcoin", "BTC", "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E")
TOKENS = (SOL, USDC, RAY, BTC)
VENUES = ("Raydium", "Orca", "Jupiter")

NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FixedSuccessPolicy(SuccessPolicy):
    def __init__(self, outcome: bool = True):
        self.outcome = outcome
        self.calls = []

    async def confirm(self, route):
        self.calls.append(route)
        return self.outcome


class StubProvider(SnapshotProvider):
    """Returns a fixed snapshot. `gate` lets a test hold a refresh in flight."""
    def __init__(self, snapshot: Optional[Snapshot] = None, error: Optional[Exception] = None,
                 gate: Optional[asyncio.Event] = None):
        self.snapshot = snapshot
        self.error = error
        self.gate = gate
        self.calls = 0
        self.shut_down = False

    async def get_snapshot(self, pairs):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.snapshot

    async def shutdown(self):
        self.shut_down = True


def make_route(net_profit: float, entry_amount: float = 100.0, fee_cost: float = 0.01,
               generated_at: float = NOW, triangular: bool = False, network_cost: float = 0.0001) -> Route:
    gross = net_profit + fee_cost
    if triangular:
        path, venues = (SOL, RAY, USDC, SOL), VENUES
    else:
        path, venues = (SOL, USDC), VENUES[:1]
    return Route(
        path=path,
        venues=venues,
        entry_amount=entry_amount,
        expected_return=entry_amount + gross,
        gross_profit=gross,
        profit_ratio=gross / entry_amount,
        fee_cost=fee_cost,
        net_profit=net_profit,
        generated_at=generated_at,
        network_cost=network_cost,
    )


def make_quote(symbol: str = "SOL/USDC", entry_amount: float = 500.0, direct_ratio: float = 0.01,
               loop_ratio: Optional[float] = 0.012, observed_at: float = NOW,
               venues: Sequence[str] = VENUES) -> PairQuote:
    return PairQuote(
        pair=PairSpec.parse(symbol),
        venues=tuple(venues),
        entry_amount=entry_amount,
        direct_ratio=direct_ratio,
        loop_ratio=loop_ratio,
        observed_at=observed_at,
    )


def make_snapshot(*quotes: PairQuote, tokens=TOKENS, taken_at: float = NOW, simulated: bool = False) -> Snapshot:
    return Snapshot(taken_at=taken_at, tokens=tuple(tokens), venues=VENUES, quotes=tuple(quotes),
                    congestion=1.0, simulated=simulated)


@pytest.fixture
def logger():
    return logging.getLogger("arbhawk-tests")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cfg():
    conf = copy.deepcopy(DEFAULT_CONFIG)
    conf['pairs'] = ['SOL/USDC', 'RAY/USDC', 'BTC/USDC']
    conf['system']['refresh_interval_seconds'] = 100.0
    conf['execution']['settlement_delay_seconds'] = 0.0
    conf['auto_trade']['cooldown_seconds'] = 10.0
    return conf


@pytest.fixture
def build_engine(cfg, logger, clock):
    """Engine wired with deterministic collaborators."""
    def _build(provider: SnapshotProvider, success: bool = True, connected: bool = True) -> OpportunityEngine:
        wallet = SimulatedWallet(balance=5.0)
        if connected:
            wallet.connected = True
            wallet.address = "TestWallet"
        generator = OpportunityGenerator(FeeModel(), RouteMixPolicy(0.0), rng=random.Random(7))
        executor = ExecutionSimulator(logger, FixedSuccessPolicy(success), settlement_delay=0,
                                      rng=random.Random(11), clock=clock)
        return OpportunityEngine(
            cfg, provider, generator, executor,
            TradeLedger(logger, clock=clock),
            DiagnosticAnalyzer(),
            RiskEngine(logger, max_consecutive_failures=3, clock=clock),
            wallet, logger, clock=clock,
        )
    return _build
