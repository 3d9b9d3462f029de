# arbhawk/risk_engine.py
from datetime import datetime, timezone
from typing import Iterable, List, Optional
import logging
import time

from .models import ExecutionOutcome, FailureReason, RiskConfig, Route

PRE_SUBMISSION_FAILURES = (FailureReason.WALLET_DISCONNECTED, FailureReason.EXCEEDS_MAX_TRADE_AMOUNT)


def filter_routes(routes: Iterable[Route], risk_config: RiskConfig) -> List[Route]:
    """
    Keeps the routes whose net profit clears the user's threshold.
    Order is preserved. max_trade_amount is enforced at execution, not here.
    """
    threshold = risk_config.min_profit_threshold
    return [r for r in routes if r.net_profit >= threshold]


class RiskEngine:
    """
    Daily limits and circuit breaker for automatic trading.
    Separates the decision 'Can we trade?' from the logic of finding the trade.
    """
    def __init__(self, logger: logging.Logger, max_consecutive_failures: int = 5, clock=time.time):
        self.logger = logger
        self.max_consecutive_failures = max_consecutive_failures
        self.clock = clock
        self.daily_pnl = 0.0
        self.trades_today = 0
        self.consecutive_fails = 0
        self.kill_switch = False
        self.loss_limit_hit = False
        self._day = self._today()

    def _today(self):
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc).date()

    def _roll_day(self):
        today = self._today()
        if today != self._day:
            self._day = today
            self.daily_pnl = 0.0
            self.trades_today = 0
            self.loss_limit_hit = False

    def pre_trade_check(self, route: Route, risk_config: RiskConfig) -> Optional[str]:
        """
        The final gatekeeper before an automatic execution.
        Returns None when the route may be traded, otherwise the rejection reason.
        """
        self._roll_day()

        if self.kill_switch:
            return "kill switch active"

        if self.trades_today >= risk_config.max_trades_per_day:
            return f"daily trade limit reached ({self.trades_today}/{risk_config.max_trades_per_day})"

        # Zero allows no loss at all; the limit re-arms at the next UTC day
        if self.daily_pnl < -risk_config.max_daily_loss:
            if not self.loss_limit_hit:
                self.logger.critical(f"⛔ REJECTED: Max Daily Loss Hit (${self.daily_pnl:.2f})")
            self.loss_limit_hit = True
            return "max daily loss reached"

        if route.entry_amount > risk_config.max_trade_amount:
            return f"trade size ${route.entry_amount:.2f} exceeds limit ${risk_config.max_trade_amount:.2f}"

        if route.network_cost > risk_config.fee_budget:
            return f"network fee {route.network_cost:.6f} exceeds budget {risk_config.fee_budget:.6f}"

        return None

    def record_execution_result(self, route: Route, outcome: ExecutionOutcome):
        """
        Updates daily counters from a terminal outcome.
        A failed settlement still burns its fee, which counts against the daily loss.
        Attempts rejected before submission leave the counters alone.
        """
        if outcome.reason in PRE_SUBMISSION_FAILURES:
            return
        self._roll_day()
        self.trades_today += 1

        if outcome.success:
            self.daily_pnl += outcome.realized_profit
            self.consecutive_fails = 0
        else:
            self.daily_pnl -= route.fee_cost
            self.consecutive_fails += 1
            if self.consecutive_fails >= self.max_consecutive_failures:
                self.logger.critical(f"⛔ KILL SWITCH ACTIVATED: {self.consecutive_fails} consecutive execution failures.")
                self.kill_switch = True

    def reset(self):
        """Re-arms the circuit breaker after manual review."""
        self.kill_switch = False
        self.consecutive_fails = 0
