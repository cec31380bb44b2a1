"""
Core: Position Ledger

Owns the open/closed position sets, available capital and cumulative PnL.
Every mutation happens under one re-entrant lock and is followed by a full
persist, so the state on disk always reflects the last committed transition.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional
import logging
import threading

from core.exceptions import CollaboratorUnavailable, LedgerError
from core.interfaces import LedgerStore
from core.models import (
    ExitReason,
    LedgerState,
    Position,
    PositionStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


class PositionLedger:
    """
    Single-writer ledger shared by the monitoring, signal and heartbeat cycles.

    Callers that need a read-check-write step spanning several calls (the
    trailing-stop ratchet followed by the exit decision) hold `locked()`;
    nothing inside that block may call an external collaborator.
    """

    def __init__(self, store: LedgerStore, state: LedgerState, initial_capital: float):
        self._store = store
        self._state = state
        self._initial_capital = float(initial_capital)
        self._lock = threading.RLock()

    @classmethod
    def restore(cls, store: LedgerStore, initial_capital: float) -> "PositionLedger":
        """Load persisted state if present, else start from configured capital."""
        raw = store.load()
        if raw:
            state = LedgerState.from_dict(raw)
            logger.info(
                "Restored ledger from %s: capital=%.4f open=%d closed=%d pnl=%+.4f halted=%s",
                store.describe(), state.capital, state.open_count,
                len(state.closed_positions), state.total_pnl, state.halted,
            )
        else:
            state = LedgerState(capital=float(initial_capital))
            logger.info("No persisted ledger found, starting with capital=%.4f", initial_capital)
        return cls(store, state, initial_capital)

    @contextmanager
    def locked(self) -> Iterator[LedgerState]:
        with self._lock:
            yield self._state

    # --- read side -------------------------------------------------------

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def capital(self) -> float:
        return self._state.capital

    @property
    def total_pnl(self) -> float:
        return self._state.total_pnl

    @property
    def halted(self) -> bool:
        return self._state.halted

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def initial_capital(self) -> float:
        return self._initial_capital

    def open_positions(self) -> List[Position]:
        """Stable snapshot of open positions taken at call time."""
        with self._lock:
            return list(self._state.open_positions)

    def closed_positions(self) -> List[Position]:
        with self._lock:
            return list(self._state.closed_positions)

    def get_open(self, position_id: str) -> Optional[Position]:
        with self._lock:
            for position in self._state.open_positions:
                if position.id == position_id:
                    return position
            return None

    # --- write side ------------------------------------------------------

    def record_entry(self, position: Position, committed_capital: float) -> None:
        with self._lock:
            if any(p.id == position.id for p in self._state.open_positions):
                raise LedgerError(f"Position {position.id} is already open")
            position.status = PositionStatus.OPEN
            self._state.open_positions.append(position)
            self._state.capital -= committed_capital
            self.persist()
        logger.info(
            "Ledger entry: %s %s size=%.4f price=%.8f capital=%.4f",
            position.symbol, position.id[:8], committed_capital, position.entry_price, self._state.capital,
        )

    def record_exit(
        self,
        position_id: str,
        exit_price: float,
        proceeds: float,
        realized_pnl: float,
        reason: ExitReason,
        exit_tx: Optional[str] = None,
        fallback: bool = False,
    ) -> Optional[Position]:
        """
        Move a position from open to closed and book its PnL.

        Returns:
            The closed position, or None if position_id is not open (no-op)
        """
        with self._lock:
            index = next(
                (i for i, p in enumerate(self._state.open_positions) if p.id == position_id),
                None,
            )
            if index is None:
                logger.debug("record_exit ignored: %s is not open", position_id)
                return None

            position = self._state.open_positions.pop(index)
            position.exit_price = exit_price
            position.exit_time = utc_now()
            position.pnl = realized_pnl
            position.exit_reason = ExitReason(reason)
            position.exit_tx = exit_tx
            position.fallback_exit = fallback
            position.status = PositionStatus.CLOSED

            self._state.closed_positions.append(position)
            self._state.capital += proceeds
            self._state.total_pnl += realized_pnl
            self.persist()

        logger.info(
            "Ledger exit: %s %s reason=%s pnl=%+.4f capital=%.4f total_pnl=%+.4f",
            position.symbol, position.id[:8], position.exit_reason.value,
            realized_pnl, self._state.capital, self._state.total_pnl,
        )
        return position

    def apply_trailing_stop(self, position_id: str, price: float, policy) -> bool:
        """Ratchet an open position's stop under the lock; persist if it moved."""
        with self._lock:
            position = self.get_open(position_id)
            if position is None:
                return False
            updated = policy.update_trailing_stop(position, price)
            if updated:
                self.persist()
            return updated

    def evaluate_halt(self, policy) -> bool:
        """
        Apply the portfolio halt test. The flag is sticky.

        Returns:
            True only when this call flipped halted from False to True
        """
        with self._lock:
            if self._state.halted:
                return False
            if not policy.portfolio_should_halt(self._state):
                return False
            self._state.halted = True
            self._state.halted_at = utc_now()
            self.persist()
        logger.error(
            "PORTFOLIO HALT: total_pnl=%+.4f (since reset %+.4f) - new entries disabled",
            self._state.total_pnl, self._state.pnl_since_reset,
        )
        return True

    def set_running(self, running: bool) -> None:
        with self._lock:
            self._state.running = bool(running)
            self.persist()

    def persist(self) -> bool:
        """
        Write the full state to the store.

        A store failure is logged and leaves the in-memory state authoritative;
        the next mutation (or the shutdown flush) writes it again.
        """
        with self._lock:
            self._state.updated_at = utc_now()
            try:
                self._store.save(self._state.to_dict())
            except (CollaboratorUnavailable, OSError) as e:
                logger.error(f"Failed to persist ledger to {self._store.describe()}: {e}")
                return False
            return True

    # --- reporting -------------------------------------------------------

    def equity_summary(self) -> Dict[str, Any]:
        """
        Capital conservation view: capital + committed - realized PnL should
        equal the initial capital, up to slippage booked at exit.
        """
        with self._lock:
            committed = self._state.committed_capital
            accounted = self._state.capital + committed - self._state.total_pnl
            return {
                "initial_capital": self._initial_capital,
                "capital": self._state.capital,
                "committed": committed,
                "total_pnl": self._state.total_pnl,
                "drift": accounted - self._initial_capital,
            }

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "capital": round(self._state.capital, 6),
                "total_pnl": round(self._state.total_pnl, 6),
                "pnl_since_reset": round(self._state.pnl_since_reset, 6),
                "open_positions": [
                    {
                        "id": p.id,
                        "symbol": p.symbol,
                        "entry_price": p.entry_price,
                        "stop_loss": p.stop_loss,
                        "take_profit": p.take_profit,
                        "highest_price": p.highest_price,
                    }
                    for p in self._state.open_positions
                ],
                "closed_count": len(self._state.closed_positions),
                "running": self._state.running,
                "halted": self._state.halted,
                "updated_at": self._state.updated_at.isoformat() if isinstance(self._state.updated_at, datetime) else None,
            }
