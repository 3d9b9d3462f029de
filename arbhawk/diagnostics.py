# arbhawk/diagnostics.py
"""
Rule-based diagnostics over a read-only snapshot of engine state.

Every rule looks at the same `DiagnosticContext` and returns at most one
issue. Rules carry no state and use no randomness, so the same context always
yields the same issues in the same order. The "no opportunities" rule runs
last because it stays quiet when a more serious issue already explains an
empty route set.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .models import DiagnosticIssue, IssueCategory, RiskConfig, Route, Severity, TradeRecord, TradeStatus

CATEGORY_DESCRIPTIONS = {
    IssueCategory.PRICE_SIMULATION: 'Issues related to price data accuracy or simulation',
    IssueCategory.TRANSACTION_FAILURE: 'Problems with executing transactions',
    IssueCategory.CONNECTIVITY: 'Network or API connection issues',
    IssueCategory.PERFORMANCE: 'Bot performance and efficiency concerns',
    IssueCategory.CONFIGURATION: 'Configuration and settings problems',
    IssueCategory.SECURITY: 'Security vulnerabilities or risks',
    IssueCategory.UNKNOWN: 'Unclassified or general issues',
}


def describe_category(category: IssueCategory) -> str:
    return CATEGORY_DESCRIPTIONS.get(category, 'Miscellaneous issues')


@dataclass(frozen=True)
class DiagnosticContext:
    routes: Tuple[Route, ...]
    ledger: Tuple[TradeRecord, ...]
    risk_config: RiskConfig
    is_testnet: bool
    last_refresh_at: Optional[float]
    last_error: Optional[str]
    endpoint_identity: str
    auto_trade_enabled: bool
    now: float
    wallet_connected: Optional[bool] = None
    simulated_feed: bool = False


@dataclass(frozen=True)
class DiagnosticThresholds:
    stale_threshold: float = 60.0
    failure_rate_threshold: float = 0.3
    failure_window: float = 3600.0
    min_sample_size: int = 5
    public_endpoint_markers: Tuple[str, ...] = ('api.mainnet-beta.solana.com',)
    suspect_profit_ratio: float = 0.05
    max_clock_skew: float = 5.0

    @classmethod
    def from_config(cls, cfg: dict) -> "DiagnosticThresholds":
        d = cfg['diagnostics']
        return cls(
            stale_threshold=d['stale_threshold_seconds'],
            failure_rate_threshold=d['failure_rate_threshold'],
            failure_window=d['failure_window_seconds'],
            min_sample_size=d['min_sample_size'],
            public_endpoint_markers=tuple(cfg['endpoints']['public_markers']),
            suspect_profit_ratio=d['suspect_profit_ratio'],
            max_clock_skew=d['max_clock_skew_seconds'],
        )


Rule = Callable[[DiagnosticContext, List[DiagnosticIssue]], Optional[DiagnosticIssue]]


class DiagnosticAnalyzer:
    def __init__(self, thresholds: Optional[DiagnosticThresholds] = None):
        self.thresholds = thresholds or DiagnosticThresholds()
        # Order only matters for the final rule and for tie-breaking between equal severities
        self.rules: Sequence[Rule] = (
            self._stale_data,
            self._explicit_error,
            self._failure_rate,
            self._public_endpoint,
            self._unsafe_auto_trading,
            self._suspect_prices,
            self._wallet_disconnected,
            self._no_opportunities,
        )

    def analyze(self, context: DiagnosticContext) -> List[DiagnosticIssue]:
        """Evaluates every rule and returns issues by severity, most severe first."""
        issues: List[DiagnosticIssue] = []
        for rule in self.rules:
            issue = rule(context, issues)
            if issue is not None:
                issues.append(issue)
        return sorted(issues, key=lambda i: -i.severity.value)

    @staticmethod
    def _issue(key: str, ctx: DiagnosticContext, category: IssueCategory, severity: Severity,
               title: str, description: str, remediation: str) -> DiagnosticIssue:
        return DiagnosticIssue(
            id=f"{category.value}:{key}",
            category=category,
            severity=severity,
            title=title,
            description=description,
            remediation=remediation,
            detected_at=ctx.now,
        )

    def _stale_data(self, ctx, issues):
        if ctx.last_refresh_at is None:
            return None
        age = ctx.now - ctx.last_refresh_at
        if age <= self.thresholds.stale_threshold:
            return None
        return self._issue(
            'stale-data', ctx, IssueCategory.CONNECTIVITY, Severity.HIGH,
            'Stale Market Data',
            f'Market data has not been updated in {round(age)} seconds.',
            'Check your internet connection and the data endpoint status. '
            'Consider switching to a different provider.',
        )

    def _explicit_error(self, ctx, issues):
        if ctx.last_error is None:
            return None
        return self._issue(
            'error-signal', ctx, IssueCategory.CONNECTIVITY, Severity.HIGH,
            'Connection Error Detected',
            f'Error message: {ctx.last_error}',
            'Verify the data endpoint is operational. Try switching to a different provider.',
        )

    def _failure_rate(self, ctx, issues):
        window_start = ctx.now - self.thresholds.failure_window
        resolved = [
            t for t in ctx.ledger
            if t.status.is_terminal and t.resolved_at is not None and t.resolved_at >= window_start
        ]
        if not resolved or len(resolved) < self.thresholds.min_sample_size:
            return None
        failed = sum(1 for t in resolved if t.status is TradeStatus.FAILED)
        rate = failed / len(resolved)
        if rate <= self.thresholds.failure_rate_threshold:
            return None
        return self._issue(
            'failure-rate', ctx, IssueCategory.TRANSACTION_FAILURE, Severity.HIGH,
            'High Transaction Failure Rate',
            f'{failed} out of {len(resolved)} recent trades have failed ({round(rate * 100)}% failure rate).',
            'Check wallet connectivity, fee budget and slippage tolerance. '
            'Consider using a more reliable endpoint.',
        )

    def _public_endpoint(self, ctx, issues):
        if ctx.is_testnet:
            return None
        if not any(marker in ctx.endpoint_identity for marker in self.thresholds.public_endpoint_markers):
            return None
        return self._issue(
            'public-endpoint', ctx, IssueCategory.PERFORMANCE, Severity.MEDIUM,
            'Using Public RPC Endpoint',
            'You are using a public endpoint which may have rate limits and reliability issues.',
            'Use a dedicated data provider for better reliability and performance.',
        )

    def _unsafe_auto_trading(self, ctx, issues):
        if not (ctx.is_testnet and ctx.auto_trade_enabled):
            return None
        return self._issue(
            'testnet-auto-trading', ctx, IssueCategory.CONFIGURATION, Severity.CRITICAL,
            'Auto-Trading Enabled on Testnet',
            'Auto-trading is enabled while in testnet mode. Simulated trades may be mistaken for real ones.',
            'Either disable auto-trading or switch to mainnet if you intend to perform real trades.',
        )

    def _suspect_prices(self, ctx, issues):
        """
        Flags price data that does not look like a real market: a simulated
        feed outside testnet, profit ratios too large to be real, or quotes
        stamped in the future.
        """
        findings = []
        if ctx.simulated_feed and not ctx.is_testnet:
            findings.append('the market feed is simulated while on mainnet')
        unrealistic = [r for r in ctx.routes if abs(r.profit_ratio) >= self.thresholds.suspect_profit_ratio]
        if unrealistic:
            findings.append(f'{len(unrealistic)} route(s) claim a profit ratio of '
                            f'{self.thresholds.suspect_profit_ratio:.0%} or more')
        future = [r for r in ctx.routes if r.generated_at > ctx.now + self.thresholds.max_clock_skew]
        if future:
            findings.append(f'{len(future)} route(s) are timestamped in the future')
        if not findings:
            return None
        return self._issue(
            'suspect-prices', ctx, IssueCategory.PRICE_SIMULATION, Severity.MEDIUM,
            'Simulated Price Data Detected',
            'Price data looks unrealistic: ' + '; '.join(findings) + '.',
            'Connect to real exchange data instead of simulated values before trusting profit estimates.',
        )

    def _wallet_disconnected(self, ctx, issues):
        if ctx.wallet_connected is not False:
            return None
        return self._issue(
            'wallet-disconnected', ctx, IssueCategory.CONNECTIVITY, Severity.LOW,
            'Wallet Not Connected',
            'No wallet is connected, so every execution attempt will be rejected.',
            'Connect a wallet and make sure it holds enough balance for fees.',
        )

    def _no_opportunities(self, ctx, issues):
        if ctx.routes:
            return None
        if any(i.severity.value > Severity.MEDIUM.value for i in issues):
            return None
        return self._issue(
            'no-opportunities', ctx, IssueCategory.UNKNOWN, Severity.MEDIUM,
            'No Arbitrage Opportunities Found',
            'The bot is not finding any arbitrage opportunities, which could be normal '
            'in current market conditions or indicate an issue.',
            'Adjust your minimum profit threshold or check if market data is being received correctly.',
        )
