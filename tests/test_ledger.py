import dataclasses
import itertools
import random
import threading

import pytest

from arbhawk.exceptions import LedgerError, TradeAlreadyResolvedError, UnknownTradeError
from arbhawk.ledger import TradeLedger
from arbhawk.models import ExecutionOutcome, FailureReason, TradeStatus

from conftest import NOW, make_route


def _ids(*values):
    it = iter(values)
    return lambda: next(it)


def test_record_then_complete(logger, clock):
    ledger = TradeLedger(logger, id_factory=_ids("r1"), clock=clock)
    entry = ledger.record(make_route(3.0))
    assert entry.id == "r1"
    assert entry.status is TradeStatus.PENDING
    assert entry.submitted_at == NOW
    assert ledger.total_realized_profit == 0.0

    resolved = ledger.resolve("r1", ExecutionOutcome.completed(3.2, "txabc"))
    assert resolved.status is TradeStatus.COMPLETED
    assert resolved.tx_reference == "txabc"
    assert ledger.total_realized_profit == pytest.approx(3.2)
    assert ledger.history == (resolved,)


def test_history_is_most_recent_first(logger, clock):
    ledger = TradeLedger(logger, id_factory=_ids("a", "b", "c"), clock=clock)
    for _ in range(3):
        ledger.record(make_route(1.0))
    assert [r.id for r in ledger.history] == ["c", "b", "a"]
    assert ledger.get("a").id == "a"
    assert ledger.get("zzz") is None
    assert len(ledger.pending()) == 3


def test_second_resolution_is_rejected(logger, clock):
    ledger = TradeLedger(logger, id_factory=_ids("r1"), clock=clock)
    ledger.record(make_route(3.0))
    ledger.resolve("r1", ExecutionOutcome.completed(3.2))

    with pytest.raises(TradeAlreadyResolvedError):
        ledger.resolve("r1", ExecutionOutcome.completed(5.0))
    with pytest.raises(TradeAlreadyResolvedError):
        ledger.resolve("r1", ExecutionOutcome.failed(FailureReason.SETTLEMENT_REJECTED))
    assert ledger.total_realized_profit == pytest.approx(3.2)
    assert ledger.history[0].status is TradeStatus.COMPLETED


def test_unknown_id_is_rejected(logger, clock):
    ledger = TradeLedger(logger, clock=clock)
    with pytest.raises(UnknownTradeError):
        ledger.resolve("missing", ExecutionOutcome.completed(1.0))
    assert len(ledger) == 0


def test_duplicate_id_is_rejected(logger, clock):
    ledger = TradeLedger(logger, id_factory=lambda: "same", clock=clock)
    ledger.record(make_route(1.0))
    with pytest.raises(LedgerError):
        ledger.record(make_route(2.0))
    assert len(ledger) == 1


def test_records_are_frozen(logger, clock):
    ledger = TradeLedger(logger, clock=clock)
    entry = ledger.record(make_route(1.0))
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.status = TradeStatus.COMPLETED
    assert isinstance(ledger.history, tuple)


def test_total_equals_sum_of_completed_profits(logger, clock):
    rng = random.Random(2024)
    counter = itertools.count()
    ledger = TradeLedger(logger, id_factory=lambda: f"t{next(counter)}", clock=clock)

    open_ids = []
    for _ in range(300):
        if open_ids and rng.random() < 0.6:
            trade_id = open_ids.pop(rng.randrange(len(open_ids)))
            if rng.random() < 0.7:
                outcome = ExecutionOutcome.completed(rng.uniform(-2.0, 8.0))
            else:
                outcome = ExecutionOutcome.failed(FailureReason.SETTLEMENT_REJECTED)
            ledger.resolve(trade_id, outcome)
        else:
            open_ids.append(ledger.record(make_route(rng.uniform(0.1, 5.0))).id)

        history, total = ledger.snapshot()
        assert total == sum(r.realized_profit for r in history if r.status is TradeStatus.COMPLETED)
        for r in history:
            assert (r.realized_profit is not None) == (r.status is TradeStatus.COMPLETED)


def test_concurrent_writers_keep_ids_unique(logger):
    ledger = TradeLedger(logger)
    route = make_route(1.0)

    def worker():
        for _ in range(50):
            entry = ledger.record(route)
            ledger.resolve(entry.id, ExecutionOutcome.completed(0.5))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    history, total = ledger.snapshot()
    assert len(history) == 400
    assert len({r.id for r in history}) == 400
    assert total == pytest.approx(200.0)
    assert ledger.pending() == []


def test_get_matches_published_history(logger, clock):
    ledger = TradeLedger(logger, id_factory=_ids("a", "b"), clock=clock)
    ledger.record(make_route(1.0))
    ledger.record(make_route(2.0))
    resolved = ledger.resolve("a", ExecutionOutcome.completed(0.7))

    assert ledger.get("a") is resolved
    assert ledger.get("a") in ledger.history
    assert ledger.get("b").status is TradeStatus.PENDING
    assert ledger.get("missing") is None
