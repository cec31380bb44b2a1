"""
Core domain models: positions, ledger state, entry candidates and
collaborator results.

Position Schema (persisted, schema_version 2):
    {
        "id": "9f1c...", "instrument": "<mint>", "symbol": "BONK",
        "entry_price": 1.0, "entry_amount": 0.084, "quantity": 0.084,
        "entry_time": "2026-01-01T00:00:00+00:00",
        "stop_loss": 0.85, "take_profit": 1.3, "highest_price": 1.0,
        "status": "open", "exit_price": null, "exit_time": null, "pnl": null,
        "exit_reason": null, "fallback_exit": false
    }

Schema version 1 records have no "highest_price"; they restore with
highest_price = entry_price.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

SCHEMA_VERSION = 2


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExitReason(str, Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    MANUAL = "manual"


class ExitAction(str, Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    HOLD = "hold"


EXIT_REASON_LABELS = {
    ExitReason.STOP_LOSS: "trailing stop-loss",
    ExitReason.TAKE_PROFIT: "take-profit",
    ExitReason.MANUAL: "manual",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class Position:
    """A single open or closed trade."""
    id: str
    instrument: str
    symbol: str
    entry_price: float
    entry_amount: float  # base currency committed
    quantity: float  # tokens acquired
    entry_time: datetime
    stop_loss: float
    take_profit: float
    highest_price: float
    status: PositionStatus = PositionStatus.OPEN
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    pnl: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    fallback_exit: bool = False
    entry_tx: Optional[str] = None
    exit_tx: Optional[str] = None
    signal_strength: Optional[float] = None

    @classmethod
    def open(
        cls,
        instrument: str,
        symbol: str,
        entry_price: float,
        entry_amount: float,
        quantity: float,
        stop_loss: float,
        take_profit: float,
        entry_tx: Optional[str] = None,
        signal_strength: Optional[float] = None,
    ) -> "Position":
        return cls(
            id=uuid.uuid4().hex,
            instrument=instrument,
            symbol=symbol,
            entry_price=entry_price,
            entry_amount=entry_amount,
            quantity=quantity,
            entry_time=utc_now(),
            stop_loss=stop_loss,
            take_profit=take_profit,
            highest_price=entry_price,
            entry_tx=entry_tx,
            signal_strength=signal_strength,
        )

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def pnl_pct(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (price - self.entry_price) / self.entry_price * 100.0

    def unrealized_pnl(self, price: float) -> float:
        return self.entry_amount * (price / self.entry_price - 1.0) if self.entry_price > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "instrument": self.instrument,
            "symbol": self.symbol,
            "entry_price": self.entry_price,
            "entry_amount": self.entry_amount,
            "quantity": self.quantity,
            "entry_time": _iso(self.entry_time),
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "highest_price": self.highest_price,
            "status": self.status.value,
            "exit_price": self.exit_price,
            "exit_time": _iso(self.exit_time),
            "pnl": self.pnl,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "fallback_exit": self.fallback_exit,
            "entry_tx": self.entry_tx,
            "exit_tx": self.exit_tx,
            "signal_strength": self.signal_strength,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        entry_price = float(data["entry_price"])
        highest = data.get("highest_price")
        reason = data.get("exit_reason")
        return cls(
            id=str(data["id"]),
            instrument=str(data["instrument"]),
            symbol=str(data.get("symbol") or "UNKNOWN"),
            entry_price=entry_price,
            entry_amount=float(data["entry_amount"]),
            quantity=float(data.get("quantity", 0.0)),
            entry_time=_parse_time(data.get("entry_time")) or utc_now(),
            stop_loss=float(data["stop_loss"]),
            take_profit=float(data["take_profit"]),
            # Records written before the trailing stop existed carry no high-water mark
            highest_price=entry_price if highest is None else float(highest),
            status=PositionStatus(data.get("status", PositionStatus.OPEN.value)),
            exit_price=_opt_float(data.get("exit_price")),
            exit_time=_parse_time(data.get("exit_time")),
            pnl=_opt_float(data.get("pnl")),
            exit_reason=ExitReason(reason) if reason else None,
            fallback_exit=bool(data.get("fallback_exit", False)),
            entry_tx=data.get("entry_tx"),
            exit_tx=data.get("exit_tx"),
            signal_strength=_opt_float(data.get("signal_strength")),
        )


@dataclass
class LedgerState:
    """Aggregate bookkeeping for the position pool."""
    capital: float
    open_positions: List[Position] = field(default_factory=list)
    closed_positions: List[Position] = field(default_factory=list)
    total_pnl: float = 0.0
    pnl_baseline: float = 0.0  # total_pnl at the last manual halt reset
    running: bool = False
    halted: bool = False
    halted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def open_count(self) -> int:
        return len(self.open_positions)

    @property
    def pnl_since_reset(self) -> float:
        """Realized PnL counted against the portfolio stop."""
        return self.total_pnl - self.pnl_baseline

    @property
    def committed_capital(self) -> float:
        return sum(p.entry_amount for p in self.open_positions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "capital": self.capital,
            "open_positions": [p.to_dict() for p in self.open_positions],
            "closed_positions": [p.to_dict() for p in self.closed_positions],
            "total_pnl": self.total_pnl,
            "pnl_baseline": self.pnl_baseline,
            "running": self.running,
            "halted": self.halted,
            "halted_at": _iso(self.halted_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerState":
        return cls(
            capital=float(data["capital"]),
            open_positions=[Position.from_dict(p) for p in data.get("open_positions", [])],
            closed_positions=[Position.from_dict(p) for p in data.get("closed_positions", [])],
            total_pnl=float(data.get("total_pnl", 0.0)),
            pnl_baseline=float(data.get("pnl_baseline", 0.0)),
            running=bool(data.get("running", False)),
            halted=bool(data.get("halted", False)),
            halted_at=_parse_time(data.get("halted_at")),
            updated_at=_parse_time(data.get("updated_at")),
        )


@dataclass
class EntryCandidate:
    """A candidate entry supplied by the signal source."""
    instrument: str
    symbol: str
    entry_price: float
    strength: float = 0.0
    sentiment_score: Optional[float] = None
    has_momentum: bool = False
    has_breakout: bool = False
    detected_at: datetime = field(default_factory=utc_now)


@dataclass
class SafetyVerdict:
    safe: bool
    risk_score: float
    reason: Optional[str] = None
    risks: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class BuyResult:
    success: bool
    filled_quantity: float = 0.0
    fill_price: Optional[float] = None
    tx_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SellResult:
    success: bool
    proceeds: float = 0.0
    fill_price: Optional[float] = None
    tx_id: Optional[str] = None
    error: Optional[str] = None
