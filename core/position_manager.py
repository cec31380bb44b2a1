"""
Position Management: Entry, Exit and Monitoring

Drives each position through open -> closing -> closed:
- entry: admission check -> safety screen -> sizing -> buy -> ledger
- exit: sell (or fallback valuation) -> ledger -> portfolio halt check
- monitoring: trailing-stop ratchet and stop-loss / take-profit exits for
  every open position on each monitor cycle
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from core.audit_log import TradeJournal
from core.interfaces import OrderExecutor, PriceSource, SafetyScreener
from core.ledger import PositionLedger
from core.models import (
    EXIT_REASON_LABELS,
    EntryCandidate,
    ExitAction,
    ExitReason,
    Position,
    SafetyVerdict,
    SellResult,
)
from core.risk import RiskPolicy
from infra.alerting import TradeNotifier
from infra.metrics import MetricsRecorder

logger = logging.getLogger(__name__)


@dataclass
class ExitPolicy:
    """What to do when the sell of a triggered exit fails."""
    force_close_on_sell_failure: bool = True
    sell_failure_haircut_pct: float = 0.15  # booked loss vs entry when force-closing

    @classmethod
    def from_policy(cls, policy: Optional[Dict[str, Any]]) -> "ExitPolicy":
        cfg = (policy or {}).get("exits", {}) or {}
        return cls(
            force_close_on_sell_failure=bool(cfg.get("force_close_on_sell_failure", True)),
            sell_failure_haircut_pct=float(cfg.get("sell_failure_haircut_pct", 0.15)),
        )


@dataclass
class MonitorReport:
    """Outcome of one monitor pass"""
    checked: int = 0
    skipped: int = 0
    stops_raised: int = 0
    exits: List[str] = field(default_factory=list)


class PositionManager:
    """
    Orchestrates the position lifecycle against the ledger and collaborators.

    Responsibilities:
    - Gate and execute entries
    - Close positions on stop-loss, take-profit or operator request
    - Ratchet trailing stops during monitoring
    - Flip the portfolio halt after losing exits

    The ledger lock is never held across a collaborator call.
    """

    def __init__(
        self,
        ledger: PositionLedger,
        risk: RiskPolicy,
        price_source: PriceSource,
        screener: SafetyScreener,
        executor: OrderExecutor,
        notifier: Optional[TradeNotifier] = None,
        journal: Optional[TradeJournal] = None,
        metrics: Optional[MetricsRecorder] = None,
        exit_policy: Optional[ExitPolicy] = None,
    ):
        self.ledger = ledger
        self.risk = risk
        self.price_source = price_source
        self.screener = screener
        self.executor = executor
        self.notifier = notifier or TradeNotifier()
        self.journal = journal
        self.metrics = metrics or MetricsRecorder(enabled=False)
        self.exit_policy = exit_policy or ExitPolicy()

        self._entry_lock = threading.Lock()
        self._closing: Set[str] = set()  # guarded by the ledger lock

        logger.info(
            "PositionManager initialized: force_close_on_sell_failure=%s haircut=%.0f%%",
            self.exit_policy.force_close_on_sell_failure,
            self.exit_policy.sell_failure_haircut_pct * 100,
        )

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def enter(self, candidate: EntryCandidate) -> Optional[Position]:
        """
        Open a position for a candidate.

        Any failure before the buy fills aborts with no ledger change.

        Returns:
            The new Position, or None if the entry was denied or failed
        """
        with self._entry_lock:
            return self._enter(candidate)

    def _enter(self, candidate: EntryCandidate) -> Optional[Position]:
        symbol = candidate.symbol

        # 1. Admission
        with self.ledger.locked() as state:
            check = self.risk.can_enter(state)
        if not check.approved:
            logger.warning(f"Entry denied for {symbol}: {check.reason}")
            self.metrics.record_entry_rejection("admission")
            return None

        # 2. Safety screen
        logger.info(f"Safety check: {symbol}")
        verdict = self._assess(candidate)
        if not verdict.safe:
            logger.warning(f"Safety check rejected {symbol}: {verdict.reason} (score={verdict.risk_score:.0f})")
            self.notifier.entry_rejected(symbol, verdict.reason or "unsafe", verdict.risk_score)
            self.metrics.record_entry_rejection("safety")
            return None
        logger.info(f"Safety check passed: {symbol} (score={verdict.risk_score:.0f})")

        # 3. Sizing
        size = self.risk.position_size(self.ledger.capital)
        if self.risk.is_dust(size):
            logger.warning(f"Position size {size:.4f} for {symbol} is too small to execute")
            self.metrics.record_entry_rejection("size")
            return None

        # 4. Buy
        logger.info(f"Entry attempt: {symbol} ({size:.4f})")
        try:
            fill = self.executor.buy(candidate.instrument, size)
        except Exception as e:
            logger.error(f"Buy for {symbol} raised: {e}", exc_info=True)
            self.notifier.error(f"buy order failed: {symbol}", e)
            self.metrics.record_entry_rejection("execution")
            return None
        if not fill.success:
            logger.error(f"Buy for {symbol} failed: {fill.error}")
            self.notifier.error(f"buy order failed: {symbol}", fill.error or "unknown error")
            self.metrics.record_entry_rejection("execution")
            return None

        # 5. Record
        entry_price = candidate.entry_price
        position = Position.open(
            instrument=candidate.instrument,
            symbol=symbol,
            entry_price=entry_price,
            entry_amount=size,
            quantity=fill.filled_quantity,
            stop_loss=self.risk.initial_stop(entry_price),
            take_profit=self.risk.take_profit_price(entry_price),
            entry_tx=fill.tx_id,
            signal_strength=candidate.strength,
        )
        self.ledger.record_entry(position, size)

        if self.journal:
            self.journal.log_entry(position, sentiment_score=candidate.sentiment_score)
        self.metrics.record_entry()
        self._record_ledger_metrics()
        self.notifier.trade_entered(symbol, size, entry_price, position.stop_loss, position.take_profit)
        return position

    def _assess(self, candidate: EntryCandidate) -> SafetyVerdict:
        try:
            return self.screener.assess(candidate.instrument)
        except Exception as e:
            logger.warning(f"Safety screener failed for {candidate.symbol}: {e}")
            return SafetyVerdict(safe=False, risk_score=-1, reason=f"screener unavailable: {e}")

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def exit(self, position_id: str, reason: ExitReason) -> Optional[Position]:
        """
        Close an open position.

        Unknown ids and ids already closing are ignored, so repeated calls for
        the same position close it once.

        Returns:
            The closed Position, or None if nothing was closed
        """
        reason = ExitReason(reason)
        # Claim the position atomically: open and not already being sold
        with self.ledger.locked():
            position = self.ledger.get_open(position_id)
            if position is None:
                logger.debug(f"exit ignored: {position_id} is not open")
                return None
            if position_id in self._closing:
                logger.debug(f"exit ignored: {position_id} is already closing")
                return None
            self._closing.add(position_id)

        try:
            return self._close(position, reason)
        finally:
            with self.ledger.locked():
                self._closing.discard(position_id)

    def _close(self, position: Position, reason: ExitReason) -> Optional[Position]:
        label = EXIT_REASON_LABELS[reason]
        logger.info(f"Exit attempt: {position.symbol} ({reason.value})")

        try:
            result = self.executor.sell(position.instrument, position.quantity)
        except Exception as e:
            logger.error(f"Sell for {position.symbol} raised: {e}", exc_info=True)
            result = SellResult(success=False, error=str(e))

        fallback = False
        if result.success:
            proceeds = result.proceeds
            if result.fill_price:
                exit_price = result.fill_price
            elif position.quantity > 0:
                exit_price = proceeds / position.quantity
            else:
                exit_price = position.stop_loss
        elif self.exit_policy.force_close_on_sell_failure:
            haircut = self.exit_policy.sell_failure_haircut_pct
            proceeds = position.entry_amount * (1 - haircut)
            exit_price = position.entry_price * (1 - haircut)
            fallback = True
            logger.error(
                f"Sell for {position.symbol} failed ({result.error}); booking fallback exit at "
                f"-{haircut:.0%} of entry"
            )
            self.notifier.error(f"sell order failed: {position.symbol} (booked at -{haircut:.0%})", result.error or "unknown error")
        else:
            logger.error(f"Sell for {position.symbol} failed ({result.error}); position stays open")
            self.notifier.error(f"sell order failed: {position.symbol}", result.error or "unknown error")
            return None

        pnl = proceeds - position.entry_amount
        closed = self.ledger.record_exit(
            position.id,
            exit_price=exit_price,
            proceeds=proceeds,
            realized_pnl=pnl,
            reason=reason,
            exit_tx=result.tx_id,
            fallback=fallback,
        )
        if closed is None:
            return None

        if self.journal:
            self.journal.log_exit(closed, proceeds)
        self.metrics.record_exit(reason.value, fallback)
        self.notifier.trade_exited(closed.symbol, pnl, label, result.tx_id)

        self.check_portfolio_halt()
        self._record_ledger_metrics()
        return closed

    def check_portfolio_halt(self) -> bool:
        """Evaluate the portfolio stop; notify when it fires."""
        if not self.ledger.evaluate_halt(self.risk):
            return False
        if self.journal:
            self.journal.log_halt(self.ledger.total_pnl, self.risk.config.portfolio_stop_loss)
        self.notifier.portfolio_halted(self.ledger.total_pnl)
        return True

    def close_all(self, reason: ExitReason = ExitReason.MANUAL) -> List[Position]:
        closed = []
        for position in self.ledger.open_positions():
            result = self.exit(position.id, reason)
            if result is not None:
                closed.append(result)
        return closed

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def monitor_all(self) -> MonitorReport:
        """
        Re-evaluate every open position once.

        Iterates a snapshot taken at call time; a position closed during this
        pass is not revisited. Positions without a price are skipped until the
        next cycle.
        """
        report = MonitorReport()
        for position in self.ledger.open_positions():
            try:
                self._monitor_one(position, report)
            except Exception as e:
                logger.error(f"Position monitor error ({position.symbol}): {e}", exc_info=True)

        if report.exits or report.stops_raised:
            logger.info(
                f"Monitor pass: checked={report.checked} skipped={report.skipped} "
                f"stops_raised={report.stops_raised} exits={len(report.exits)}"
            )
        self._record_ledger_metrics()
        return report

    def _monitor_one(self, position: Position, report: MonitorReport) -> None:
        with self.ledger.locked():
            if position.id in self._closing:
                return

        price = self._fetch_price(position)
        if price is None:
            report.skipped += 1
            self.metrics.record_price_skip()
            return
        report.checked += 1

        # Ratchet and decide in one step under the ledger lock
        with self.ledger.locked():
            if self.ledger.get_open(position.id) is None:
                return
            if self.ledger.apply_trailing_stop(position.id, price, self.risk):
                report.stops_raised += 1
                self.metrics.record_stop_update()
                logger.info(
                    f"Trailing stop raised: {position.symbol} | high={position.highest_price:.8f} "
                    f"-> SL={position.stop_loss:.8f}"
                )
            action = self.risk.check_exit(position, price)

        logger.debug(
            f"{position.symbol}: price={price:.8f} SL={position.stop_loss:.8f} "
            f"uPnL={position.unrealized_pnl(price):+.4f} ({position.pnl_pct(price):+.1f}%)"
        )
        if action == ExitAction.STOP_LOSS:
            logger.warning(
                f"Stop-loss hit: {position.symbol} @ {price:.8f} ({position.pnl_pct(price):+.1f}%, "
                f"uPnL={position.unrealized_pnl(price):+.4f})"
            )
            if self.exit(position.id, ExitReason.STOP_LOSS) is not None:
                report.exits.append(position.id)
        elif action == ExitAction.TAKE_PROFIT:
            logger.info(f"Take-profit hit: {position.symbol} @ {price:.8f}")
            if self.exit(position.id, ExitReason.TAKE_PROFIT) is not None:
                report.exits.append(position.id)

    def _fetch_price(self, position: Position) -> Optional[float]:
        try:
            price = self.price_source.current_price(position.instrument)
        except Exception as e:
            logger.warning(f"Price unavailable for {position.symbol}: {e}")
            return None
        if price is None or price <= 0:
            logger.debug(f"Price unavailable for {position.symbol}, skipping this cycle")
            return None
        return price

    def _record_ledger_metrics(self) -> None:
        state = self.ledger.state
        self.metrics.record_ledger(state.capital, state.total_pnl, state.open_count, state.halted)
