"""Tests for monitor_all: trailing stops, exits and skipped prices."""

import logging

import pytest

from core.models import ExitReason
from tests.helpers import candidate


def test_price_path_trails_and_exits_on_stop(manager, ledger, prices):
    position = manager.enter(candidate())
    prices.set("MINT1", [1.20, 1.10, 1.00])

    report = manager.monitor_all()
    assert report.stops_raised == 1
    assert position.stop_loss == pytest.approx(1.02)

    report = manager.monitor_all()
    assert report.exits == []
    assert ledger.get_open(position.id) is not None

    report = manager.monitor_all()
    assert report.exits == [position.id]
    [closed] = ledger.closed_positions()
    assert closed.exit_reason == ExitReason.STOP_LOSS
    # stopped out above entry
    assert closed.pnl == pytest.approx(0.0)


def test_take_profit_exit(manager, ledger, prices):
    position = manager.enter(candidate())
    prices.set("MINT1", 1.35)

    report = manager.monitor_all()

    assert report.exits == [position.id]
    assert ledger.closed_positions()[0].exit_reason == ExitReason.TAKE_PROFIT


@pytest.mark.parametrize("price", [None, 0.0, -1.0, RuntimeError("api down")])
def test_unavailable_price_skips_position(manager, ledger, prices, executor, price):
    position = manager.enter(candidate())
    prices.set("MINT1", price)

    report = manager.monitor_all()

    assert report.skipped == 1
    assert report.checked == 0
    assert ledger.get_open(position.id) is not None
    assert executor.sells == []


def test_one_failing_position_does_not_stop_the_pass(manager, ledger, prices, risk, monkeypatch):
    first = manager.enter(candidate("A"))
    second = manager.enter(candidate("B"))
    prices.set("A", 1.1)
    prices.set("B", 0.5)

    original = risk.update_trailing_stop

    def flaky(position, price):
        if position.id == first.id:
            raise ValueError("bad record")
        return original(position, price)

    monkeypatch.setattr(risk, "update_trailing_stop", flaky)

    report = manager.monitor_all()

    assert report.exits == [second.id]
    assert ledger.get_open(first.id) is not None


def test_position_closed_mid_pass_is_not_revisited(manager, ledger, prices, executor):
    first = manager.enter(candidate("A"))
    second = manager.enter(candidate("B"))
    prices.set("A", 0.5)
    prices.set("B", 0.5)

    def close_other():
        executor.sell_hook = None
        manager.exit(second.id, ExitReason.MANUAL)

    executor.sell_hook = close_other

    report = manager.monitor_all()

    assert report.exits == [first.id]
    assert len(executor.sells) == 2
    reasons = {p.id: p.exit_reason for p in ledger.closed_positions()}
    assert reasons == {first.id: ExitReason.STOP_LOSS, second.id: ExitReason.MANUAL}


def test_monitor_runs_while_halted(manager, ledger, prices):
    position = manager.enter(candidate())
    ledger.state.halted = True
    prices.set("MINT1", 0.5)

    report = manager.monitor_all()

    assert report.exits == [position.id]


def test_stop_loss_log_reports_unrealized_loss(manager, prices, caplog):
    position = manager.enter(candidate())
    assert position.unrealized_pnl(0.8) == pytest.approx(position.entry_amount * -0.2)

    prices.set("MINT1", 0.8)
    with caplog.at_level(logging.WARNING, logger="core.position_manager"):
        manager.monitor_all()

    assert f"uPnL={position.entry_amount * -0.2:+.4f}" in caplog.text
