# arbhawk/models.py
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import math
import time

from .exceptions import ConfigError


class TradeStatus(Enum):
    """
    Lifecycle states of a ledger entry.
    PENDING is transient and resolves exactly once to a terminal state.
    """
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not TradeStatus.PENDING


class FailureReason(Enum):
    WALLET_DISCONNECTED = "WALLET_DISCONNECTED"
    EXCEEDS_MAX_TRADE_AMOUNT = "EXCEEDS_MAX_TRADE_AMOUNT"
    SETTLEMENT_REJECTED = "SETTLEMENT_REJECTED"
    SETTLEMENT_TIMEOUT = "SETTLEMENT_TIMEOUT"
    SETTLEMENT_ERROR = "SETTLEMENT_ERROR"


class Severity(Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class IssueCategory(Enum):
    PRICE_SIMULATION = "price_simulation"
    TRANSACTION_FAILURE = "transaction_failure"
    CONNECTIVITY = "connectivity"
    PERFORMANCE = "performance"
    CONFIGURATION = "configuration"
    SECURITY = "security"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Token:
    """Immutable token reference. Two tokens are equal when symbol and address match."""
    name: str = field(compare=False)
    symbol: str
    address: str


@dataclass(frozen=True, slots=True)
class PairSpec:
    """A monitored pair such as SOL/USDC."""
    base: str
    quote: str

    def __post_init__(self):
        if not self.base or not self.quote:
            raise ConfigError(f"Pair needs a base and a quote symbol, got {self.base!r}/{self.quote!r}")
        if self.base == self.quote:
            raise ConfigError(f"Pair {self.base}/{self.quote} uses the same token twice")

    @classmethod
    def parse(cls, symbol: str) -> "PairSpec":
        parts = symbol.split('/')
        if len(parts) != 2:
            raise ConfigError(f"Invalid pair symbol {symbol!r}, expected BASE/QUOTE")
        return cls(parts[0].strip().upper(), parts[1].strip().upper())

    @property
    def symbol(self) -> str:
        return f"{self.base}/{self.quote}"


@dataclass(frozen=True, slots=True)
class PairQuote:
    """
    Raw economics observed for one monitored pair during a snapshot.
    `venues` is ordered by preference, the first entry quotes the best price.
    `loop_ratio` is None when the provider cannot price a triangular loop.
    """
    pair: PairSpec
    venues: Tuple[str, ...]
    entry_amount: float
    direct_ratio: float
    loop_ratio: Optional[float]
    observed_at: float


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Everything the generator needs from one provider tick."""
    taken_at: float
    tokens: Tuple[Token, ...]
    venues: Tuple[str, ...]
    quotes: Tuple[PairQuote, ...]
    congestion: float = 1.0
    simulated: bool = False


@dataclass(frozen=True, slots=True)
class Route:
    """
    A candidate arbitrage path, rebuilt from scratch every generation cycle.

    Invariants (checked on construction):
        net_profit == gross_profit - fee_cost
        expected_return == entry_amount + gross_profit
        len(venues) == len(path) - 1
        0 <= network_cost <= fee_cost

    `network_cost` is the on-chain gas part of `fee_cost`, the share the
    fee budget caps.
    """
    path: Tuple[Token, ...]
    venues: Tuple[str, ...]
    entry_amount: float
    expected_return: float
    gross_profit: float
    profit_ratio: float
    fee_cost: float
    net_profit: float
    generated_at: float
    network_cost: float = 0.0

    def __post_init__(self):
        if len(self.path) < 2:
            raise ValueError("Route path needs at least two tokens")
        if len(self.venues) != len(self.path) - 1:
            raise ValueError(f"Route has {len(self.path) - 1} hops but {len(self.venues)} venues")
        if len(self.path) == 2 and self.path[0] == self.path[1]:
            raise ValueError("Direct route must connect two distinct tokens")
        if len(self.path) == 4:
            start, middle, end, close = self.path
            if close != start:
                raise ValueError("Triangular route must close the loop on its start token")
            if middle in (start, end) or end == start:
                raise ValueError("Triangular route needs an intermediate token distinct from start and end")
        elif len(self.path) != 2:
            raise ValueError(f"Unsupported route length {len(self.path)}")
        if not math.isclose(self.net_profit, self.gross_profit - self.fee_cost, rel_tol=1e-9, abs_tol=1e-9):
            raise ValueError("Route net_profit must equal gross_profit - fee_cost")
        if not math.isclose(self.expected_return, self.entry_amount + self.gross_profit, rel_tol=1e-9, abs_tol=1e-9):
            raise ValueError("Route expected_return must equal entry_amount + gross_profit")
        if self.network_cost < 0 or self.network_cost > self.fee_cost + 1e-12:
            raise ValueError("Route network_cost must lie between 0 and fee_cost")

    @classmethod
    def build(cls, path, venues, entry_amount: float, profit_ratio: float,
              fee_cost: float, generated_at: float, network_cost: float = 0.0) -> "Route":
        """Derives the dependent economics so a route can never be inconsistent."""
        gross = entry_amount * profit_ratio
        return cls(
            path=tuple(path),
            venues=tuple(venues),
            entry_amount=entry_amount,
            expected_return=entry_amount + gross,
            gross_profit=gross,
            profit_ratio=profit_ratio,
            fee_cost=fee_cost,
            net_profit=gross - fee_cost,
            generated_at=generated_at,
            network_cost=network_cost,
        )

    @property
    def is_triangular(self) -> bool:
        return len(self.path) == 4 and self.path[0] == self.path[-1]

    @property
    def hops(self) -> int:
        return len(self.venues)

    @property
    def label(self) -> str:
        return " → ".join(t.symbol for t in self.path)


@dataclass(frozen=True, slots=True)
class RiskConfig:
    """
    User-owned risk settings. Never mutated in place: every update builds a new record.
    """
    max_trade_amount: float = 1000.0
    min_profit_threshold: float = 1.0
    max_slippage_pct: float = 0.5
    auto_trade_enabled: bool = False
    fee_budget: float = 0.01
    max_trades_per_day: int = 20
    max_daily_loss: float = 50.0

    def __post_init__(self):
        for name in ('max_trade_amount', 'max_slippage_pct', 'fee_budget', 'max_daily_loss'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigError(f"Risk setting {name} must be a non-negative number, got {value!r}")
        if isinstance(self.min_profit_threshold, bool) or not isinstance(self.min_profit_threshold, (int, float)):
            raise ConfigError(f"Risk setting min_profit_threshold must be a number, got {self.min_profit_threshold!r}")
        if isinstance(self.max_trades_per_day, bool) or not isinstance(self.max_trades_per_day, int) \
                or self.max_trades_per_day < 0:
            raise ConfigError(f"Risk setting max_trades_per_day must be a non-negative integer, got {self.max_trades_per_day!r}")
        if not isinstance(self.auto_trade_enabled, bool):
            raise ConfigError(f"Risk setting auto_trade_enabled must be true or false, got {self.auto_trade_enabled!r}")

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskConfig":
        unknown = set(data) - set(cls.field_names())
        if unknown:
            raise ConfigError(f"Unknown risk settings: {', '.join(sorted(unknown))}")
        return cls(**data)

    def merged(self, **changes) -> "RiskConfig":
        """Returns a new record with `changes` applied on top of this one."""
        unknown = set(changes) - set(self.field_names())
        if unknown:
            raise ConfigError(f"Unknown risk settings: {', '.join(sorted(unknown))}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names()}


@dataclass(frozen=True, slots=True)
class WalletState:
    connected: bool = False
    address: str = ""
    balance: float = 0.0


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Terminal result of one execution attempt."""
    status: TradeStatus
    realized_profit: Optional[float] = None
    reason: Optional[FailureReason] = None
    detail: str = ""
    tx_reference: Optional[str] = None
    settled_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.status.is_terminal:
            raise ValueError("An execution outcome must be terminal")
        if (self.status is TradeStatus.COMPLETED) != (self.realized_profit is not None):
            raise ValueError("realized_profit is set if and only if the outcome is COMPLETED")

    @classmethod
    def completed(cls, realized_profit: float, tx_reference: Optional[str] = None, **kwargs) -> "ExecutionOutcome":
        return cls(TradeStatus.COMPLETED, realized_profit=realized_profit, tx_reference=tx_reference, **kwargs)

    @classmethod
    def failed(cls, reason: FailureReason, detail: str = "", **kwargs) -> "ExecutionOutcome":
        return cls(TradeStatus.FAILED, reason=reason, detail=detail, **kwargs)

    @property
    def success(self) -> bool:
        return self.status is TradeStatus.COMPLETED


@dataclass(frozen=True, slots=True)
class TradeRecord:
    """
    Ledger entry. Records are immutable values: resolving a trade replaces
    the PENDING record with a terminal copy, so a caller can never mutate one.
    """
    id: str
    route: Route
    submitted_at: float
    status: TradeStatus = TradeStatus.PENDING
    tx_reference: Optional[str] = None
    realized_profit: Optional[float] = None
    failure_reason: Optional[FailureReason] = None
    resolved_at: Optional[float] = None

    def __post_init__(self):
        if (self.status is TradeStatus.COMPLETED) != (self.realized_profit is not None):
            raise ValueError("realized_profit is set if and only if the trade is COMPLETED")

    def resolved_with(self, outcome: ExecutionOutcome) -> "TradeRecord":
        return replace(
            self,
            status=outcome.status,
            tx_reference=outcome.tx_reference,
            realized_profit=outcome.realized_profit,
            failure_reason=outcome.reason,
            resolved_at=outcome.settled_at,
        )


@dataclass(frozen=True, slots=True)
class DiagnosticIssue:
    id: str
    category: IssueCategory
    severity: Severity
    title: str
    description: str
    remediation: str
    detected_at: float
