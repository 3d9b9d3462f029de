# arbhawk/ledger.py
import logging
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import LedgerError, TradeAlreadyResolvedError, UnknownTradeError
from .models import ExecutionOutcome, Route, TradeRecord, TradeStatus


class TradeLedger:
    """
    Append-only history of execution attempts, most recent first.

    Writers (`record`, `resolve`) are serialized by one lock. Each write
    publishes a new immutable tuple of records together with the matching
    profit total, so readers never take the lock and never see a total that
    disagrees with the history they are iterating.
    """
    def __init__(self, logger: Optional[logging.Logger] = None,
                 id_factory: Optional[Callable[[], str]] = None, clock=time.time):
        self.logger = logger or logging.getLogger(__name__)
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.clock = clock
        self._lock = threading.Lock()
        self._index: Dict[str, int] = {}
        self._records: List[TradeRecord] = []
        # (history, total, records by id), replaced as one object on every write
        self._view: Tuple[Tuple[TradeRecord, ...], float, Dict[str, TradeRecord]] = ((), 0.0, {})

    def record(self, route: Route) -> TradeRecord:
        """Creates a PENDING entry for `route` and prepends it to the history."""
        with self._lock:
            trade_id = self._id_factory()
            if trade_id in self._index:
                raise LedgerError(trade_id, f"Duplicate trade id {trade_id!r}")
            entry = TradeRecord(id=trade_id, route=route, submitted_at=self.clock())
            self._index[trade_id] = len(self._records)
            self._records.append(entry)
            self._publish()
        self.logger.info(f"📝 PENDING: {entry.id} | {route.label}")
        return entry

    def resolve(self, trade_id: str, outcome: ExecutionOutcome) -> TradeRecord:
        """
        Moves one PENDING entry to its terminal state.
        Unknown or already-resolved ids raise a LedgerError and change nothing.
        """
        with self._lock:
            pos = self._index.get(trade_id)
            if pos is None:
                raise UnknownTradeError(trade_id)
            current = self._records[pos]
            if current.status.is_terminal:
                raise TradeAlreadyResolvedError(trade_id, current.status)
            resolved = current.resolved_with(outcome)
            self._records[pos] = resolved
            self._publish()
        if resolved.status is TradeStatus.COMPLETED:
            self.logger.info(f"💰 COMPLETED: {trade_id} | Realized: ${resolved.realized_profit:.4f} "
                             f"| Total: ${self.total_realized_profit:.4f}")
        else:
            self.logger.info(f"❌ FAILED: {trade_id} | {resolved.failure_reason.value if resolved.failure_reason else ''}")
        return resolved

    def _publish(self):
        history = tuple(reversed(self._records))
        total = sum(r.realized_profit for r in history if r.status is TradeStatus.COMPLETED)
        self._view = (history, float(total), {r.id: r for r in history})

    @property
    def history(self) -> Tuple[TradeRecord, ...]:
        return self._view[0]

    @property
    def total_realized_profit(self) -> float:
        return self._view[1]

    def snapshot(self) -> Tuple[Tuple[TradeRecord, ...], float]:
        """History and total taken from the same write."""
        history, total, _ = self._view
        return history, total

    def get(self, trade_id: str) -> Optional[TradeRecord]:
        return self._view[2].get(trade_id)

    def pending(self) -> List[TradeRecord]:
        return [r for r in self.history if r.status is TradeStatus.PENDING]

    def __len__(self) -> int:
        return len(self.history)
