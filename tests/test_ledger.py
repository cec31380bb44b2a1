"""Tests for PositionLedger bookkeeping, persistence and restore."""

import threading

import pytest

from core.exceptions import LedgerError
from core.ledger import PositionLedger
from core.models import ExitReason, Position, PositionStatus
from tests.helpers import InMemoryStore


def _open(risk, entry: float = 1.0, amount: float = 0.084) -> Position:
    return Position.open(
        instrument="MINT", symbol="TKN", entry_price=entry, entry_amount=amount, quantity=amount / entry,
        stop_loss=risk.initial_stop(entry), take_profit=risk.take_profit_price(entry),
    )


def test_fresh_ledger_starts_from_initial_capital(ledger):
    assert ledger.capital == pytest.approx(0.84)
    assert ledger.total_pnl == 0.0
    assert not ledger.halted
    assert ledger.open_positions() == []


def test_entry_debits_capital_and_persists(ledger, store, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)

    assert ledger.capital == pytest.approx(0.756)
    assert [p.id for p in ledger.open_positions()] == [position.id]
    assert store.data["capital"] == pytest.approx(0.756)
    assert store.data["open_positions"][0]["id"] == position.id


def test_duplicate_entry_rejected(ledger, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)
    with pytest.raises(LedgerError):
        ledger.record_entry(position, 0.084)
    assert ledger.capital == pytest.approx(0.756)


def test_exit_credits_proceeds_and_books_pnl(ledger, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)

    closed = ledger.record_exit(position.id, exit_price=1.3, proceeds=0.1092, realized_pnl=0.0252, reason=ExitReason.TAKE_PROFIT)

    assert closed.status == PositionStatus.CLOSED
    assert closed.exit_reason == ExitReason.TAKE_PROFIT
    assert closed.pnl == pytest.approx(0.0252)
    assert ledger.capital == pytest.approx(0.8652)
    assert ledger.total_pnl == pytest.approx(0.0252)
    assert ledger.open_positions() == []
    assert [p.id for p in ledger.closed_positions()] == [position.id]


def test_exit_of_unknown_id_is_noop(ledger, store):
    saves = store.saves
    assert ledger.record_exit("missing", 1.0, 0.1, 0.0, ExitReason.MANUAL) is None
    assert ledger.capital == pytest.approx(0.84)
    assert store.saves == saves


def test_second_exit_is_noop(ledger, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)
    ledger.record_exit(position.id, 0.85, 0.0714, -0.0126, ExitReason.STOP_LOSS)

    assert ledger.record_exit(position.id, 0.5, 0.04, -0.044, ExitReason.STOP_LOSS) is None
    assert ledger.total_pnl == pytest.approx(-0.0126)
    assert len(ledger.closed_positions()) == 1


def test_capital_is_conserved_across_trades(ledger, risk):
    a, b = _open(risk), _open(risk, entry=2.0)
    ledger.record_entry(a, 0.084)
    ledger.record_entry(b, 0.0756)
    ledger.record_exit(a.id, 0.85, 0.0714, -0.0126, ExitReason.STOP_LOSS)

    summary = ledger.equity_summary()
    assert summary["committed"] == pytest.approx(0.0756)
    assert summary["drift"] == pytest.approx(0.0, abs=1e-12)


def test_halt_is_sticky_and_flips_once(ledger, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)
    ledger.record_exit(position.id, 0.0, 0.0, -0.34, ExitReason.STOP_LOSS)

    assert ledger.evaluate_halt(risk) is True
    assert ledger.halted
    assert ledger.state.halted_at is not None
    assert ledger.evaluate_halt(risk) is False
    assert ledger.halted


def test_no_halt_above_threshold(ledger, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)
    ledger.record_exit(position.id, 0.0, 0.0, -0.3399, ExitReason.STOP_LOSS)
    assert ledger.evaluate_halt(risk) is False


def test_trailing_stop_persisted_only_when_moved(ledger, store, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)
    saves = store.saves

    assert not ledger.apply_trailing_stop(position.id, 0.95, risk)
    assert store.saves == saves
    assert ledger.apply_trailing_stop(position.id, 1.2, risk)
    assert store.saves == saves + 1
    assert store.data["open_positions"][0]["stop_loss"] == pytest.approx(1.02)


def test_restore_round_trips_state(store, risk):
    ledger = PositionLedger.restore(store, 0.84)
    position = _open(risk)
    ledger.record_entry(position, 0.084)
    ledger.apply_trailing_stop(position.id, 1.2, risk)

    restored = PositionLedger.restore(store, 0.84)
    [reloaded] = restored.open_positions()
    assert reloaded.id == position.id
    assert reloaded.stop_loss == pytest.approx(1.02)
    assert reloaded.highest_price == pytest.approx(1.2)
    assert restored.capital == pytest.approx(0.756)


def test_restore_legacy_record_without_high_water_mark(risk):
    legacy = {
        "capital": 0.756,
        "total_pnl": 0.0,
        "open_positions": [{
            "id": "abc", "instrument": "MINT", "symbol": "TKN",
            "entry_price": 1.0, "entry_amount": 0.084, "quantity": 0.084,
            "entry_time": "2026-01-01T00:00:00+00:00",
            "stop_loss": 0.85, "take_profit": 1.3, "status": "open",
        }],
        "closed_positions": [],
    }
    ledger = PositionLedger.restore(InMemoryStore(legacy), 0.84)
    [position] = ledger.open_positions()
    assert position.highest_price == 1.0

    assert ledger.apply_trailing_stop("abc", 1.2, risk)
    assert position.stop_loss == pytest.approx(1.02)


def test_store_failure_keeps_memory_state(ledger, store, risk):
    store.fail = True
    position = _open(risk)
    ledger.record_entry(position, 0.084)

    assert ledger.capital == pytest.approx(0.756)
    assert ledger.persist() is False
    store.fail = False
    assert ledger.persist() is True
    assert store.data["capital"] == pytest.approx(0.756)


def test_open_positions_is_a_snapshot(ledger, risk):
    position = _open(risk)
    ledger.record_entry(position, 0.084)
    snapshot = ledger.open_positions()
    ledger.record_exit(position.id, 1.0, 0.084, 0.0, ExitReason.MANUAL)
    assert [p.id for p in snapshot] == [position.id]
    assert ledger.open_positions() == []


def test_concurrent_entries_and_exits_conserve_capital(ledger, risk):
    positions = [_open(risk) for _ in range(20)]

    def worker(pos):
        ledger.record_entry(pos, 0.01)
        ledger.record_exit(pos.id, 1.0, 0.011, 0.001, ExitReason.TAKE_PROFIT)

    threads = [threading.Thread(target=worker, args=(p,)) for p in positions]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(ledger.closed_positions()) == 20
    assert ledger.total_pnl == pytest.approx(0.02)
    assert ledger.capital == pytest.approx(0.86)
    assert ledger.equity_summary()["drift"] == pytest.approx(0.0, abs=1e-9)
