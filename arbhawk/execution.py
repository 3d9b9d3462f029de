# arbhawk/execution.py
import asyncio
import logging
import random
import time
from typing import Optional

from .models import ExecutionOutcome, FailureReason, RiskConfig, Route, WalletState


class SuccessPolicy:
    """
    Decides whether a submitted route settles.
    In production this is venue/chain confirmation; here it is pluggable so
    tests can substitute a deterministic double.
    """
    async def confirm(self, route: Route) -> bool:
        raise NotImplementedError


class ProbabilitySuccessPolicy(SuccessPolicy):
    def __init__(self, probability: float = 0.8, rng: Optional[random.Random] = None):
        if not 0.0 <= probability <= 1.0:
            raise ValueError(f"Success probability must be within [0, 1], got {probability}")
        self.probability = probability
        self.rng = rng or random.Random()

    async def confirm(self, route: Route) -> bool:
        return self.rng.random() < self.probability


class ExecutionSimulator:
    """
    Simulated settlement of a single route.

    Always terminates with exactly one COMPLETED or FAILED outcome:
    precondition failures return immediately, the settlement wait is bounded
    by `settlement_timeout`, and failures are never retried here. Retry policy
    belongs to the caller.
    """
    def __init__(self, logger: logging.Logger, success_policy: SuccessPolicy,
                 settlement_delay: float = 2.0, settlement_timeout: float = 10.0,
                 rng: Optional[random.Random] = None, clock=time.time):
        self.logger = logger
        self.success_policy = success_policy
        self.settlement_delay = settlement_delay
        self.settlement_timeout = settlement_timeout
        self.rng = rng or random.Random()
        self.clock = clock

    @classmethod
    def from_config(cls, cfg: dict, logger: logging.Logger,
                    rng: Optional[random.Random] = None) -> "ExecutionSimulator":
        rng = rng or random.Random()
        ex = cfg['execution']
        return cls(
            logger,
            ProbabilitySuccessPolicy(ex['success_probability'], rng),
            settlement_delay=ex['settlement_delay_seconds'],
            settlement_timeout=ex['settlement_timeout_seconds'],
            rng=rng,
        )

    async def execute(self, route: Route, risk_config: RiskConfig, wallet: WalletState) -> ExecutionOutcome:
        """
        Attempts to settle `route`.

        Returns:
            ExecutionOutcome, COMPLETED with a realized profit or FAILED with a reason.
        """
        # 1. PRECONDITIONS (no settlement wait)
        if not wallet.connected:
            self.logger.warning(f"⛔ REJECTED: {route.label} | Wallet not connected")
            return ExecutionOutcome.failed(FailureReason.WALLET_DISCONNECTED, "wallet not connected",
                                           settled_at=self.clock())
        if route.entry_amount > risk_config.max_trade_amount:
            self.logger.warning(f"⛔ REJECTED: {route.label} | Size ${route.entry_amount:.2f} "
                                f"exceeds limit ${risk_config.max_trade_amount:.2f}")
            return ExecutionOutcome.failed(
                FailureReason.EXCEEDS_MAX_TRADE_AMOUNT,
                f"entry amount {route.entry_amount:.2f} exceeds max trade amount {risk_config.max_trade_amount:.2f}",
                settled_at=self.clock(),
            )

        kind = "Triangular" if route.is_triangular else "Direct"
        self.logger.info(f"⚡ EXECUTION TRIGGERED: {kind} {route.label} via {' -> '.join(route.venues)} "
                         f"| Est. Net: ${route.net_profit:.4f}")

        # 2. SETTLEMENT WAIT
        try:
            confirmed = await asyncio.wait_for(self._settle(route), timeout=self.settlement_timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"⚠️ FAILED: {route.label} | Settlement not confirmed within {self.settlement_timeout}s")
            return ExecutionOutcome.failed(FailureReason.SETTLEMENT_TIMEOUT, "settlement timed out",
                                           settled_at=self.clock())
        except Exception as e:
            self.logger.error(f"⚠️ FAILED: {route.label} | Settlement error: {e}")
            return ExecutionOutcome.failed(FailureReason.SETTLEMENT_ERROR, str(e), settled_at=self.clock())

        # 3. OUTCOME
        if not confirmed:
            self.logger.warning(f"⚠️ FAILED: {route.label} | Transaction could not be completed")
            return ExecutionOutcome.failed(FailureReason.SETTLEMENT_REJECTED, "transaction rejected",
                                           settled_at=self.clock())

        realized = self._realized_profit(route, risk_config)
        tx_ref = f"tx{self.rng.getrandbits(32):08x}"
        self.logger.info(f"✅ SUCCESS: {route.label} | Tx: {tx_ref} | Realized: ${realized:.4f}")
        return ExecutionOutcome.completed(realized, tx_ref, settled_at=self.clock())

    async def _settle(self, route: Route) -> bool:
        if self.settlement_delay:
            await asyncio.sleep(self.settlement_delay)
        return await self.success_policy.confirm(route)

    def _realized_profit(self, route: Route, risk_config: RiskConfig) -> float:
        """
        Net profit moved by slippage, bounded by the user's slippage tolerance
        applied to the entry amount.
        """
        bound = route.entry_amount * risk_config.max_slippage_pct / 100.0
        return route.net_profit + self.rng.uniform(-bound, bound)
