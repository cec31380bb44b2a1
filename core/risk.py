"""
Core: Risk Policy

Hard constraints from policy.yaml.
Pure computations over RiskConfig and individual position / ledger values:
admission, sizing, initial stop/target, trailing-stop ratchet, exit decision
and the portfolio halt test.

NO component (signals, operator, or controller) can open a position these
checks deny.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from core.models import ExitAction, LedgerState, Position

logger = logging.getLogger(__name__)


@dataclass
class RiskConfig:
    """Static risk parameters. Fractions are decimals (0.15 = 15%)."""
    initial_capital: float = 0.84
    max_position_size_pct: float = 0.10
    max_open_positions: int = 3
    stop_loss_pct: float = 0.15
    take_profit_pct: float = 0.30
    portfolio_stop_loss: float = 0.34  # absolute base-currency loss
    min_position_size: float = 0.001  # dust threshold
    size_precision: int = 4

    @classmethod
    def from_policy(cls, policy: Optional[Dict[str, Any]]) -> "RiskConfig":
        risk = (policy or {}).get("risk", {}) or {}
        defaults = cls()
        return cls(
            initial_capital=float(risk.get("initial_capital", defaults.initial_capital)),
            max_position_size_pct=float(risk.get("max_position_size_pct", defaults.max_position_size_pct)),
            max_open_positions=int(risk.get("max_open_positions", defaults.max_open_positions)),
            stop_loss_pct=float(risk.get("stop_loss_pct", defaults.stop_loss_pct)),
            take_profit_pct=float(risk.get("take_profit_pct", defaults.take_profit_pct)),
            portfolio_stop_loss=float(risk.get("portfolio_stop_loss", defaults.portfolio_stop_loss)),
            min_position_size=float(risk.get("min_position_size", defaults.min_position_size)),
            size_precision=int(risk.get("size_precision", defaults.size_precision)),
        )


@dataclass
class RiskCheckResult:
    """Result of risk check"""
    approved: bool
    reason: Optional[str] = None
    violated_checks: List[str] = field(default_factory=list)


class RiskPolicy:
    """
    Enforces the position-pool risk rules.

    Admission checks (in order):
    1. Portfolio halt flag
    2. Max concurrent open positions
    3. Cumulative realized loss vs portfolio stop

    Holds no mutable state; update_trailing_stop mutates only the position
    it is given.
    """

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or RiskConfig()
        logger.info(
            "Initialized RiskPolicy: max_positions=%d size=%.0f%% SL=%.0f%% TP=%.0f%% portfolio_stop=%.4f",
            self.config.max_open_positions,
            self.config.max_position_size_pct * 100,
            self.config.stop_loss_pct * 100,
            self.config.take_profit_pct * 100,
            self.config.portfolio_stop_loss,
        )

    def can_enter(self, state: LedgerState) -> RiskCheckResult:
        """Check whether a new entry is allowed for this ledger state."""
        if state.halted:
            return RiskCheckResult(
                approved=False,
                reason="portfolio stop reached - trading halted",
                violated_checks=["portfolio_halted"],
            )
        if state.open_count >= self.config.max_open_positions:
            return RiskCheckResult(
                approved=False,
                reason=f"max open positions reached ({self.config.max_open_positions})",
                violated_checks=["max_open_positions"],
            )
        if state.pnl_since_reset <= -self.config.portfolio_stop_loss:
            return RiskCheckResult(
                approved=False,
                reason=f"portfolio loss reached {self.config.portfolio_stop_loss} limit",
                violated_checks=["portfolio_stop_loss"],
            )
        return RiskCheckResult(approved=True)

    def position_size(self, capital: float) -> float:
        """Base-currency size for a new position, rounded to size_precision."""
        return round(capital * self.config.max_position_size_pct, self.config.size_precision)

    def is_dust(self, size: float) -> bool:
        return size < self.config.min_position_size

    def initial_stop(self, entry_price: float) -> float:
        return entry_price * (1 - self.config.stop_loss_pct)

    def take_profit_price(self, entry_price: float) -> float:
        return entry_price * (1 + self.config.take_profit_pct)

    def update_trailing_stop(self, position: Position, current_price: float) -> bool:
        """
        Ratchet the stop behind a new high.

        The stop tracks highest_price * (1 - stop_loss_pct), floored at the
        initial stop, and never moves down. A candidate at or above the
        take-profit is not applied; that price exits on take-profit instead.

        Returns:
            True if stop_loss moved
        """
        if current_price <= position.highest_price:
            return False

        position.highest_price = current_price
        candidate = max(
            current_price * (1 - self.config.stop_loss_pct),
            self.initial_stop(position.entry_price),
        )
        if candidate <= position.stop_loss:
            return False
        if candidate >= position.take_profit:
            logger.debug(
                "Trailing stop for %s would reach take-profit (%.8f >= %.8f); leaving stop at %.8f",
                position.symbol, candidate, position.take_profit, position.stop_loss,
            )
            return False

        position.stop_loss = candidate
        return True

    def check_exit(self, position: Position, current_price: float) -> ExitAction:
        """Take-profit first (fixed target), then the ratcheted stop."""
        if current_price >= position.take_profit:
            return ExitAction.TAKE_PROFIT
        if current_price <= position.stop_loss:
            return ExitAction.STOP_LOSS
        return ExitAction.HOLD

    def portfolio_should_halt(self, state: LedgerState) -> bool:
        return state.pnl_since_reset <= -self.config.portfolio_stop_loss

    def summary(self, state: LedgerState) -> Dict[str, Any]:
        return {
            "capital": round(state.capital, 6),
            "total_pnl": round(state.total_pnl, 6),
            "pnl_since_reset": round(state.pnl_since_reset, 6),
            "open_positions": state.open_count,
            "closed_positions": len(state.closed_positions),
            "halted": state.halted,
            "portfolio_stop_loss": self.config.portfolio_stop_loss,
        }

    def log_summary(self, state: LedgerState) -> None:
        logger.info("=" * 60)
        logger.info("PORTFOLIO SUMMARY")
        logger.info(f"  Capital:         {state.capital:.4f}")
        logger.info(f"  Total PnL:       {state.total_pnl:+.4f}")
        logger.info(f"  Open positions:  {state.open_count}")
        logger.info(f"  Closed:          {len(state.closed_positions)}")
        logger.info(f"  Status:          {'HALTED' if state.halted else 'active'}")
        logger.info("=" * 60)
