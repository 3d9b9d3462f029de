# arbhawk/engine.py
import asyncio
import logging
import random
import time
from typing import List, Optional, Tuple

from .config import MAINNET, TESTNET, default_endpoint, parse_pairs, validate_endpoint
from .diagnostics import DiagnosticAnalyzer, DiagnosticContext, DiagnosticThresholds
from .exceptions import LedgerError, SnapshotError
from .execution import ExecutionSimulator
from .ledger import TradeLedger
from .logger import AsyncAuditLogger
from .market_engine import SnapshotProvider, create_provider
from .models import DiagnosticIssue, ExecutionOutcome, FailureReason, RiskConfig, Route, TradeRecord
from .risk_engine import RiskEngine, filter_routes
from .strategy import OpportunityGenerator
from .wallet import WalletProvider, create_wallet


class OpportunityEngine:
    """
    Owns the mutable state of the bot and drives it.

    One refresh driver re-runs generate -> filter on a fixed interval. Timer
    ticks and manual requests share a single-slot "refresh requested" flag, so
    a slow provider never builds a backlog. An optional auto-trade driver
    executes the top eligible route with a cool-down between executions.
    Every state change (refresh, config update, trade resolution) re-runs the
    diagnostics and replaces the previous issue list wholesale.
    """
    def __init__(self, cfg: dict, provider: SnapshotProvider, generator: OpportunityGenerator,
                 executor: ExecutionSimulator, ledger: TradeLedger, analyzer: DiagnosticAnalyzer,
                 risk: RiskEngine, wallet: WalletProvider, logger: logging.Logger,
                 audit_log: Optional[AsyncAuditLogger] = None, clock=time.time):
        self.cfg = cfg
        self.provider = provider
        self.generator = generator
        self.executor = executor
        self.ledger = ledger
        self.analyzer = analyzer
        self.risk = risk
        self.wallet = wallet
        self.logger = logger
        self.audit_log = audit_log
        self.clock = clock

        self.pairs = parse_pairs(cfg)
        self.is_testnet = cfg['system']['environment'] == TESTNET
        self.endpoint = default_endpoint(cfg, TESTNET if self.is_testnet else MAINNET)
        self.risk_config = RiskConfig.from_dict(cfg['risk'])
        self.refresh_interval = cfg['system']['refresh_interval_seconds']
        self.snapshot_timeout = cfg['system']['snapshot_timeout_seconds']
        self.cooldown = cfg['auto_trade']['cooldown_seconds']
        self.auto_poll_interval = cfg['auto_trade']['poll_interval_seconds']

        self.last_refresh_at: Optional[float] = None
        self.last_error: Optional[str] = None
        self.simulated_feed = False
        self.refresh_count = 0
        self._routes: Tuple[Route, ...] = ()
        self._eligible: Tuple[Route, ...] = ()
        self._issues: Tuple[DiagnosticIssue, ...] = ()

        self._refresh_requested = asyncio.Event()
        self._refreshing = False
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._last_auto_trade_at: Optional[float] = None
        self._auto_busy = False
        self._last_rejection: Optional[str] = None

    @classmethod
    def from_config(cls, cfg: dict, logger: logging.Logger, rng: Optional[random.Random] = None,
                    provider: Optional[SnapshotProvider] = None, wallet: Optional[WalletProvider] = None,
                    audit_log: Optional[AsyncAuditLogger] = None) -> "OpportunityEngine":
        rng = rng or random.Random()
        env = cfg['system']['environment']
        return cls(
            cfg,
            provider or create_provider(cfg, logger, rng),
            OpportunityGenerator.from_config(cfg, rng, logger),
            ExecutionSimulator.from_config(cfg, logger, rng),
            TradeLedger(logger),
            DiagnosticAnalyzer(DiagnosticThresholds.from_config(cfg)),
            RiskEngine(logger, cfg['auto_trade']['max_consecutive_failures']),
            wallet or create_wallet(cfg, default_endpoint(cfg, env), logger),
            logger,
            audit_log=audit_log,
        )

    # --- READ SIDE ---

    @property
    def opportunities(self) -> Tuple[Route, ...]:
        """Routes that pass the current risk filter, best first."""
        return self._eligible

    @property
    def all_opportunities(self) -> Tuple[Route, ...]:
        return self._routes

    @property
    def issues(self) -> Tuple[DiagnosticIssue, ...]:
        return self._issues

    @property
    def trade_history(self) -> Tuple[TradeRecord, ...]:
        return self.ledger.history

    @property
    def total_realized_profit(self) -> float:
        return self.ledger.total_realized_profit

    @property
    def running(self) -> bool:
        return self._running

    # --- LIFECYCLE ---

    async def start(self):
        if self._running:
            return
        if not await self.provider.initialize():
            self.last_error = "Market data provider failed to initialize"
            self.logger.error(self.last_error)
        self._running = True
        self._refresh_requested.set()
        self._tasks = [
            asyncio.create_task(self._refresh_loop(), name="arbhawk-refresh"),
            asyncio.create_task(self._auto_trade_loop(), name="arbhawk-auto-trade"),
        ]
        self.logger.info(f"Engine started | {'TESTNET' if self.is_testnet else 'MAINNET'} | "
                         f"{len(self.pairs)} pairs | every {self.refresh_interval}s")

    async def stop(self):
        """Stops both drivers. No tick fires after this returns."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def shutdown(self):
        """Stops the drivers and releases the provider, wallet and audit log."""
        await self.stop()
        await self.provider.shutdown()
        await self.wallet.close()
        if self.audit_log:
            await self.audit_log.stop()

    # --- REFRESH ---

    def request_refresh(self):
        """Asks the driver for a refresh. Repeated requests collapse into one."""
        self._refresh_requested.set()

    async def _refresh_loop(self):
        while self._running:
            try:
                await asyncio.wait_for(self._refresh_requested.wait(), timeout=self.refresh_interval)
            except asyncio.TimeoutError:
                pass
            self._refresh_requested.clear()
            if not self._running:
                break
            try:
                await self.refresh()
            except Exception as e:
                # Keep ticking on unexpected failures; the error surfaces through diagnostics
                self.last_error = f"Refresh failed: {e}"
                self.logger.exception("Unexpected refresh failure")
                self.run_diagnostics()

    async def refresh(self) -> bool:
        """
        Runs one generate -> filter cycle.
        Returns False without doing anything when a refresh is already in flight.
        """
        if self._refreshing:
            self.logger.debug("Refresh already in flight, request coalesced")
            return False
        self._refreshing = True
        try:
            await self._refresh_once()
        finally:
            self._refreshing = False
        return True

    async def _refresh_once(self):
        try:
            snapshot = await asyncio.wait_for(self.provider.get_snapshot(self.pairs),
                                              timeout=self.snapshot_timeout)
        except SnapshotError as e:
            self._record_refresh_failure(str(e))
            return
        except asyncio.TimeoutError:
            self._record_refresh_failure(f"Market snapshot timed out after {self.snapshot_timeout}s")
            return

        routes = tuple(self.generator.generate(snapshot))
        self._routes = routes
        self._eligible = tuple(filter_routes(routes, self.risk_config))
        self.simulated_feed = snapshot.simulated
        self.last_refresh_at = self.clock()
        self.last_error = None
        self.refresh_count += 1
        self.logger.debug(f"Refresh #{self.refresh_count}: {len(routes)} routes, {len(self._eligible)} eligible")
        self.run_diagnostics()

    def _record_refresh_failure(self, message: str):
        # Previous routes stay valid until a successful refresh replaces them
        self.last_error = message
        self.logger.warning(f"Refresh failed, keeping {len(self._routes)} previous routes: {message}")
        self.run_diagnostics()

    # --- CONFIGURATION ---

    def update_risk_config(self, **changes) -> RiskConfig:
        """
        Merges `changes` into the risk settings and swaps in the new record.
        Invalid settings raise ConfigError and leave the current record untouched.
        """
        updated = self.risk_config.merged(**changes)
        self.risk_config = updated
        self._eligible = tuple(filter_routes(self._routes, updated))
        self.logger.info(f"Risk settings updated: {', '.join(f'{k}={v}' for k, v in changes.items())}")
        self.request_refresh()
        self.run_diagnostics()
        return updated

    def set_auto_trade(self, enabled: bool) -> RiskConfig:
        return self.update_risk_config(auto_trade_enabled=bool(enabled))

    def update_endpoint(self, identity: str) -> str:
        endpoint = validate_endpoint(identity)
        self.endpoint = endpoint
        self.logger.info(f"Data endpoint changed: now using {endpoint}")
        self.request_refresh()
        self.run_diagnostics()
        return endpoint

    def set_network(self, is_testnet: bool) -> str:
        """Switches environment and resets the endpoint to that environment's default."""
        self.is_testnet = bool(is_testnet)
        self.endpoint = default_endpoint(self.cfg, TESTNET if self.is_testnet else MAINNET)
        self.logger.info(f"Switched to {'TESTNET' if self.is_testnet else 'MAINNET'} | {self.endpoint}")
        self.request_refresh()
        self.run_diagnostics()
        return self.endpoint

    # --- EXECUTION ---

    async def execute_route(self, route: Route) -> TradeRecord:
        """
        Records a PENDING trade, settles it and resolves the ledger entry.
        The entry always reaches a terminal state, even if this call is cancelled.
        """
        entry = self.ledger.record(route)
        risk_config = self.risk_config
        try:
            outcome = await self.executor.execute(route, risk_config, self.wallet.state())
        except asyncio.CancelledError:
            self._resolve(entry, ExecutionOutcome.failed(FailureReason.SETTLEMENT_ERROR, "execution cancelled",
                                                         settled_at=self.clock()))
            raise

        resolved = self._resolve(entry, outcome)
        self.risk.record_execution_result(route, outcome)
        if self.audit_log:
            await self.audit_log.log_trade(resolved)
        self.run_diagnostics()
        return resolved

    def _resolve(self, entry: TradeRecord, outcome: ExecutionOutcome) -> TradeRecord:
        try:
            return self.ledger.resolve(entry.id, outcome)
        except LedgerError as e:
            self.logger.error(f"Ledger conflict: {e}")
            return self.ledger.get(entry.id) or entry

    async def auto_trade_step(self) -> Optional[TradeRecord]:
        """
        One auto-trade decision. Picks the top route of the current eligible set,
        never a rank cached from an earlier cycle.
        """
        risk_config = self.risk_config
        if not risk_config.auto_trade_enabled or self._auto_busy:
            return None
        now = self.clock()
        if self._last_auto_trade_at is not None and now - self._last_auto_trade_at < self.cooldown:
            return None
        if not self._eligible:
            return None

        route = self._eligible[0]
        rejection = self.risk.pre_trade_check(route, risk_config)
        if rejection:
            if rejection != self._last_rejection:
                self.logger.warning(f"⛔ AUTO-TRADE SKIPPED: {route.label} | {rejection}")
            self._last_rejection = rejection
            return None
        self._last_rejection = None

        self._last_auto_trade_at = now
        self._auto_busy = True
        try:
            return await self.execute_route(route)
        finally:
            self._auto_busy = False

    async def _auto_trade_loop(self):
        while self._running:
            await asyncio.sleep(self.auto_poll_interval)
            try:
                await self.auto_trade_step()
            except Exception:
                self.logger.exception("Auto-trade step failed")

    # --- DIAGNOSTICS ---

    def diagnostic_context(self) -> DiagnosticContext:
        history, _ = self.ledger.snapshot()
        return DiagnosticContext(
            routes=self._routes,
            ledger=history,
            risk_config=self.risk_config,
            is_testnet=self.is_testnet,
            last_refresh_at=self.last_refresh_at,
            last_error=self.last_error,
            endpoint_identity=self.endpoint,
            auto_trade_enabled=self.risk_config.auto_trade_enabled,
            now=self.clock(),
            wallet_connected=self.wallet.connected,
            simulated_feed=self.simulated_feed,
        )

    def run_diagnostics(self) -> List[DiagnosticIssue]:
        issues = self.analyzer.analyze(self.diagnostic_context())
        known = {i.id for i in self._issues}
        for issue in issues:
            if issue.id not in known:
                self.logger.warning(f"🩺 {issue.severity.name}: {issue.title} | {issue.description}")
        self._issues = tuple(issues)
        return issues
