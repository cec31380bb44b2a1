"""Tests for the bot process: cycles, halt handling and shutdown."""

import json
import shutil
from pathlib import Path

import pytest
import yaml

from core.exceptions import ConfigError
from runner.main_loop import TradingBot
from tests.helpers import StubExecutor, StubPriceSource, StubScreener, StubSignalSource, candidate

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config"


@pytest.fixture
def config_dir(tmp_path):
    target = tmp_path / "config"
    shutil.copytree(REPO_CONFIG, target)
    app = yaml.safe_load((target / "app.yaml").read_text())
    app["logging"]["file"] = None
    app["state"] = {"path": str(tmp_path / "data" / "ledger.json"), "backup_dir": str(tmp_path / "backups")}
    app["journal"]["path"] = str(tmp_path / "logs" / "journal.jsonl")
    app["lock"]["dir"] = str(tmp_path / "data")
    (target / "app.yaml").write_text(yaml.safe_dump(app))
    return target


@pytest.fixture
def prices():
    return StubPriceSource({"MINT1": 1.0, "MINT2": 2.0, "MINT3": 0.5})


@pytest.fixture
def signals():
    return StubSignalSource(
        [
            candidate("MINT1", "AAA", 1.0, strength=95),
            candidate("MINT2", "BBB", 2.0, strength=90),
            candidate("MINT3", "CCC", 0.5, strength=85),
        ],
        snapshot=[{"symbol": "AAA", "price": 1.0}],
    )


@pytest.fixture
def make_bot(config_dir, prices, signals):
    bots = []

    def _make():
        bot = TradingBot(
            config_dir=str(config_dir),
            price_source=prices,
            screener=StubScreener(),
            executor=StubExecutor(prices),
            signal_source=signals,
            configure_logs=False,
        )
        bots.append(bot)
        return bot

    yield _make
    for bot in bots:
        bot.shutdown("test teardown")


def test_invalid_config_refuses_to_start(config_dir):
    (config_dir / "policy.yaml").write_text("risk: {}\n")
    with pytest.raises(ConfigError):
        TradingBot(config_dir=str(config_dir), configure_logs=False)


def test_second_instance_refused(make_bot):
    make_bot()
    with pytest.raises(RuntimeError):
        make_bot()


def test_signal_cycle_opens_up_to_cap(make_bot):
    bot = make_bot()
    assert bot.signal_cycle() == 3
    assert {p.instrument for p in bot.ledger.open_positions()} == {"MINT1", "MINT2", "MINT3"}

    # max open positions reached
    assert bot.signal_cycle() == 0


def test_signal_cycle_skips_held_instruments(make_bot):
    bot = make_bot()
    bot.max_candidates_per_cycle = 1
    assert bot.signal_cycle() == 1
    assert bot.signal_cycle() == 0
    assert len(bot.ledger.open_positions()) == 1


def test_halted_portfolio_skips_entries_but_keeps_monitoring(make_bot, prices):
    bot = make_bot()
    bot.max_candidates_per_cycle = 1
    bot.signal_cycle()
    with bot.ledger.locked() as state:
        state.halted = True

    assert bot.signal_cycle() == 0

    prices.set("MINT1", 0.5)
    bot.monitor_cycle()
    assert bot.ledger.open_positions() == []


def test_heartbeat_applies_portfolio_halt(make_bot):
    bot = make_bot()
    with bot.ledger.locked() as state:
        state.total_pnl = -0.40
    bot.heartbeat_cycle()
    assert bot.ledger.halted
    assert bot.health_snapshot()["ok"] is False


def test_market_notes_are_journaled(make_bot, tmp_path):
    bot = make_bot()
    bot.market_notes_cycle()
    lines = (tmp_path / "logs" / "journal.jsonl").read_text().splitlines()
    assert json.loads(lines[-1])["event"] == "MARKET_NOTE"


def test_health_snapshot(make_bot):
    bot = make_bot()
    snapshot = bot.health_snapshot()
    assert snapshot["ok"] is True
    assert set(snapshot["tasks"]) == {"monitor", "signals", "heartbeat", "market_notes"}
    assert snapshot["alerts_enabled"] is False


def test_run_once_persists_and_releases_lock(make_bot, tmp_path):
    bot = make_bot()
    bot.run_once()

    state = json.loads((tmp_path / "data" / "ledger.json").read_text())
    assert len(state["open_positions"]) == 3
    assert state["running"] is False
    assert not (tmp_path / "data" / "momentum-bot.pid").exists()


def test_restart_restores_open_positions(make_bot):
    first = make_bot()
    first.run_once()

    second = make_bot()
    assert len(second.ledger.open_positions()) == 3
    committed = sum(p.entry_amount for p in second.ledger.open_positions())
    assert second.ledger.capital + committed == pytest.approx(0.84)


def test_liquidate_closes_everything(make_bot):
    bot = make_bot()
    bot.signal_cycle()
    assert bot.liquidate() == 3
    assert bot.ledger.open_positions() == []
    assert bot.ledger.capital == pytest.approx(0.84)


def test_shutdown_is_idempotent(make_bot):
    bot = make_bot()
    bot.start()
    assert bot.shutdown("first") is True
    assert bot.shutdown("second") is True
    assert not bot.scheduler.is_running
    assert not bot.instance_lock.acquired
