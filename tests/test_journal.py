"""Tests for the JSONL trade journal, including via the PositionManager."""

import json
from unittest.mock import patch

from core.audit_log import TradeJournal
from core.models import ExitReason
from core.position_manager import PositionManager
from tests.helpers import candidate


def _events(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


def test_entry_and_exit_are_journaled(tmp_path, ledger, risk, prices, screener, executor, notifier):
    journal = TradeJournal(str(tmp_path / "journal.jsonl"))
    manager = PositionManager(ledger, risk, prices, screener, executor, notifier=notifier, journal=journal)

    position = manager.enter(candidate(symbol="BONK"))
    prices.set("MINT1", 1.3)
    manager.exit(position.id, ExitReason.TAKE_PROFIT)

    buy, sell = _events(tmp_path / "journal.jsonl")
    assert buy["event"] == "BUY"
    assert buy["symbol"] == "BONK"
    assert buy["sentiment_score"] == 60
    assert sell["event"] == "SELL"
    assert sell["reason"] == "take_profit"
    assert sell["fallback_exit"] is False
    assert sell["pnl"] > 0


def test_halt_and_market_notes(tmp_path):
    journal = TradeJournal(str(tmp_path / "journal.jsonl"))
    journal.log_halt(-0.35, 0.34)
    journal.log_market_note([])
    journal.log_market_note([{"symbol": "WIF", "price": 0.01, "price_change_4h": 6.2}])

    halt, note = _events(tmp_path / "journal.jsonl")
    assert halt["event"] == "HALT"
    assert note["top_candidates"][0]["symbol"] == "WIF"


def test_write_failure_is_swallowed(tmp_path):
    journal = TradeJournal(str(tmp_path / "journal.jsonl"))
    with patch("builtins.open", side_effect=OSError("read-only fs")):
        journal.log_halt(-0.35, 0.34)
    assert not (tmp_path / "journal.jsonl").exists()
