"""
Core: Trade Journal

Structured JSONL trail of entries, exits, halts and periodic market notes.
"""

import json
import logging
import threading
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.models import Position

logger = logging.getLogger(__name__)


class TradeJournal:
    """
    Append-only journal of trading events.

    Output format: JSONL (one JSON object per line). Write failures are
    logged and never propagate into the trading cycle.
    """

    def __init__(self, journal_file: Optional[str] = None):
        """
        Initialize trade journal.

        Args:
            journal_file: Path to journal file (default: logs/journal.jsonl)
        """
        self.journal_file = Path(journal_file) if journal_file else Path("logs/journal.jsonl")
        self.journal_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"Initialized TradeJournal at {self.journal_file}")

    def log_entry(self, position: Position, sentiment_score: Optional[float] = None) -> None:
        self._write({
            "event": "BUY",
            "position_id": position.id,
            "symbol": position.symbol,
            "instrument": position.instrument,
            "size": position.entry_amount,
            "price": position.entry_price,
            "quantity": position.quantity,
            "stop_loss": position.stop_loss,
            "take_profit": position.take_profit,
            "signal_strength": position.signal_strength,
            "sentiment_score": sentiment_score,
            "tx_id": position.entry_tx,
        })

    def log_exit(self, position: Position, proceeds: float) -> None:
        self._write({
            "event": "SELL",
            "position_id": position.id,
            "symbol": position.symbol,
            "instrument": position.instrument,
            "size": proceeds,
            "price": position.exit_price,
            "pnl": position.pnl,
            "reason": position.exit_reason.value if position.exit_reason else None,
            "fallback_exit": position.fallback_exit,
            "highest_price": position.highest_price,
            "tx_id": position.exit_tx,
        })

    def log_halt(self, total_pnl: float, threshold: float) -> None:
        self._write({"event": "HALT", "total_pnl": total_pnl, "threshold": threshold})

    def log_market_note(self, tokens: List[Dict[str, Any]]) -> None:
        if not tokens:
            return
        self._write({"event": "MARKET_NOTE", "top_candidates": tokens})

    def _write(self, entry: Dict[str, Any]) -> None:
        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), **entry}
        try:
            line = json.dumps(entry, default=str)
            with self._lock:
                with open(self.journal_file, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write journal entry {entry.get('event')}: {e}")
