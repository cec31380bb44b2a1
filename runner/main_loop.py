"""
Runner: Trading Bot Process

Wires the position engine to its collaborators and drives four periodic
cycles at independent cadences:

1. monitor      - trailing stops and stop-loss / take-profit exits
2. signals      - scan for entry candidates and open positions
3. heartbeat    - status log + notification, portfolio halt re-check
4. market_notes - journal the top candidates under watch

All cycles share one PositionLedger; its lock is the only synchronization.
"""

import logging
import signal
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.audit_log import TradeJournal
from core.exceptions import ConfigError
from core.execution import PaperExecutor, PaperFillConfig
from core.interfaces import OrderExecutor, PriceSource, SafetyScreener, SignalSource
from core.ledger import PositionLedger
from core.market_data import DEXSCREENER_BASE, DexScreenerPriceSource
from core.models import ExitReason
from core.position_manager import ExitPolicy, PositionManager
from core.risk import RiskConfig, RiskPolicy
from core.safety import RugCheckScreener
from infra.alerting import AlertService, TradeNotifier
from infra.healthcheck import HealthServer
from infra.instance_lock import SingleInstanceLock
from infra.metrics import MetricsRecorder
from infra.state_store import create_ledger_store_from_config
from runner.scheduler import Scheduler
from strategy.signals import MomentumSignalSource, SentimentAnalyzer, SignalDetector, TokenScanner

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """File + console logging from the app.yaml `logging:` block."""
    cfg = cfg or {}
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = cfg.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


class TradingBot:
    """
    Process orchestrator.

    Responsibilities:
    - Load and validate config
    - Build the ledger, risk policy and collaborators
    - Run the periodic cycles until a stop signal
    - Shut down within the configured deadline
    """

    def __init__(
        self,
        config_dir: str = "config",
        price_source: Optional[PriceSource] = None,
        screener: Optional[SafetyScreener] = None,
        executor: Optional[OrderExecutor] = None,
        signal_source: Optional[SignalSource] = None,
        configure_logs: bool = True,
    ):
        self.config_dir = Path(config_dir)
        from tools.config_validator import validate_all_configs
        validation_errors = validate_all_configs(config_dir)
        if validation_errors:
            logger.error("=" * 60)
            logger.error("CONFIGURATION VALIDATION FAILED")
            for idx, error in enumerate(validation_errors, start=1):
                logger.error(f"{idx:>2}. {error}")
            logger.error("=" * 60)
            raise ConfigError(f"Invalid configuration: {len(validation_errors)} error(s) found")

        self.app_config = self._load_yaml("app.yaml")
        self.policy_config = self._load_yaml("policy.yaml")
        if configure_logs:
            configure_logging(self.app_config.get("logging"))

        self.loop_config = self.app_config.get("loop") or {}
        self.max_candidates_per_cycle = int(self.loop_config.get("max_candidates_per_cycle", 3))
        monitoring = self.app_config.get("monitoring") or {}
        data_sources = self.app_config.get("data_sources") or {}
        timeout = float(data_sources.get("http_timeout_seconds", 8))

        lock_cfg = self.app_config.get("lock") or {}
        self.instance_lock = SingleInstanceLock(lock_cfg.get("name", "momentum-bot"), lock_cfg.get("dir", "data"))
        if not self.instance_lock.acquire():
            raise RuntimeError("Another bot instance holds the lock; refusing to start")

        # Ledger
        self.risk = RiskPolicy(RiskConfig.from_policy(self.policy_config))
        self.store = create_ledger_store_from_config(self.app_config.get("state"))
        self.ledger = PositionLedger.restore(self.store, self.risk.config.initial_capital)

        # Collaborators
        dex_base = (data_sources.get("dexscreener") or {}).get("base_url") or DEXSCREENER_BASE
        self.price_source = price_source or DexScreenerPriceSource(base_url=dex_base, timeout=timeout)
        self.screener = screener or RugCheckScreener.from_config(self.policy_config.get("safety"), timeout=timeout)
        self.executor = executor or PaperExecutor(self.price_source, PaperFillConfig.from_policy(self.policy_config))
        self.signal_source = signal_source or self._build_signal_source(data_sources, dex_base, timeout)

        # Observability
        self.alerts = AlertService.from_config(monitoring.get("alerts"))
        self.notifier = TradeNotifier(self.alerts)
        self.journal = TradeJournal((self.app_config.get("journal") or {}).get("path"))
        metrics_cfg = monitoring.get("metrics") or {}
        self.metrics = MetricsRecorder(
            enabled=bool(metrics_cfg.get("enabled", False)),
            port=int(metrics_cfg.get("port", 9100)),
        )
        self.health_config = monitoring.get("healthcheck") or {}
        self.health_server: Optional[HealthServer] = None

        self.position_manager = PositionManager(
            ledger=self.ledger,
            risk=self.risk,
            price_source=self.price_source,
            screener=self.screener,
            executor=self.executor,
            notifier=self.notifier,
            journal=self.journal,
            metrics=self.metrics,
            exit_policy=ExitPolicy.from_policy(self.policy_config),
        )

        self.scheduler = Scheduler(
            shutdown_timeout_seconds=float(self.loop_config.get("shutdown_timeout_seconds", 30)),
            on_cycle=self.metrics.record_cycle,
        )
        self.scheduler.add_task("monitor", float(self.loop_config.get("monitor_interval_seconds", 10)), self.monitor_cycle)
        self.scheduler.add_task("signals", float(self.loop_config.get("signal_interval_seconds", 30)), self.signal_cycle)
        self.scheduler.add_task(
            "heartbeat", float(self.loop_config.get("heartbeat_interval_seconds", 300)), self.heartbeat_cycle,
            run_immediately=False,
        )
        self.scheduler.add_task(
            "market_notes", float(self.loop_config.get("market_notes_interval_seconds", 600)), self.market_notes_cycle,
        )

        self._shutdown_done = False
        logger.info(f"Initialized TradingBot (ledger={self.store.describe()}, capital={self.ledger.capital:.4f})")

    def _load_yaml(self, filename: str) -> dict:
        with open(self.config_dir / filename) as f:
            return yaml.safe_load(f) or {}

    def _build_signal_source(self, data_sources: Dict[str, Any], dex_base: str, timeout: float) -> SignalSource:
        signals_cfg = self.policy_config.get("signals") or {}
        scanner_cfg = dict(signals_cfg.get("scanner") or {})
        scanner_cfg.setdefault("base_url", dex_base)
        return MomentumSignalSource(
            scanner=TokenScanner.from_config(scanner_cfg, timeout=timeout),
            sentiment=SentimentAnalyzer.from_config(data_sources.get("lunarcrush"), timeout=timeout),
            detector=SignalDetector.from_config(signals_cfg.get("detector"), timeout=timeout),
            max_tokens=int(signals_cfg.get("max_tokens", 10)),
        )

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def monitor_cycle(self) -> None:
        self.position_manager.monitor_all()

    def signal_cycle(self) -> int:
        """Evaluate entry candidates. Returns the number of positions opened."""
        if self.ledger.halted:
            logger.debug("Portfolio halted; skipping signal cycle")
            return 0

        check = self.risk.can_enter(self.ledger.state)
        if not check.approved:
            logger.debug(f"Entries blocked: {check.reason}")
            return 0

        candidates = self.signal_source.candidates()[: self.max_candidates_per_cycle]
        opened = 0
        for candidate in candidates:
            if self.scheduler.stop_requested:
                break
            with self.ledger.locked() as state:
                check = self.risk.can_enter(state)
            if not check.approved:
                logger.info(f"Stopping candidate evaluation: {check.reason}")
                break
            if any(p.instrument == candidate.instrument for p in self.ledger.open_positions()):
                logger.debug(f"Already holding {candidate.symbol}; skipping")
                continue
            if self.position_manager.enter(candidate) is not None:
                opened += 1
        return opened

    def heartbeat_cycle(self) -> None:
        state = self.ledger.state
        logger.info(
            f"Heartbeat: capital={state.capital:.4f} open={state.open_count} "
            f"pnl={state.total_pnl:+.4f} halted={state.halted}"
        )
        self.notifier.heartbeat(state.capital, state.open_count, state.total_pnl)
        self.position_manager.check_portfolio_halt()

    def market_notes_cycle(self) -> None:
        tokens = self.signal_source.market_snapshot(limit=3)
        self.journal.log_market_note(tokens)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health_snapshot(self) -> Dict[str, Any]:
        ledger = self.ledger.snapshot()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "ok": not ledger["halted"],
            "ledger": ledger,
            "equity": self.ledger.equity_summary(),
            "tasks": self.scheduler.task_stats(),
            "scheduler_running": self.scheduler.is_running,
            "alerts_enabled": self.alerts.is_enabled(),
            "metrics_enabled": self.metrics.enabled,
        }

    def _start_health_server(self) -> None:
        if not self.health_config.get("enabled", False):
            return
        server = HealthServer(
            int(self.health_config.get("port", 8090)),
            self.health_snapshot,
            host=self.health_config.get("host", "127.0.0.1"),
        )
        try:
            server.start()
        except OSError as exc:
            logger.error("Failed to start health server: %s", exc)
            return
        self.health_server = server

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _handle_stop(self, signum, _frame) -> None:
        logger.warning(f"Received signal {signum}; stopping after in-flight cycles")
        self.scheduler.request_stop()

    def start(self) -> None:
        self.ledger.set_running(True)
        try:
            self.metrics.start()
        except OSError as exc:
            logger.error("Failed to start metrics exporter: %s", exc)
        self._start_health_server()
        self.risk.log_summary(self.ledger.state)
        self.notifier.bot_started(self.ledger.capital)
        self.scheduler.start()

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, self._handle_stop)
        signal.signal(signal.SIGTERM, self._handle_stop)
        self.start()
        logger.info("Bot running; Ctrl+C to stop")
        try:
            self.scheduler.wait()
        finally:
            self.shutdown("signal")

    def run_once(self) -> None:
        """One monitor pass and one signal pass, synchronously."""
        self.ledger.set_running(True)
        try:
            self.scheduler.run_once("monitor")
            self.scheduler.run_once("signals")
        finally:
            self.shutdown("single cycle complete")

    def liquidate(self) -> int:
        """Close every open position at market, then shut down."""
        try:
            closed = self.position_manager.close_all(ExitReason.MANUAL)
            logger.warning(f"Liquidation closed {len(closed)} position(s)")
            return len(closed)
        finally:
            self.shutdown("liquidation")

    def shutdown(self, reason: str = "shutdown") -> bool:
        """
        Stop cycles within the deadline, flush the ledger and release resources.

        Returns:
            True if every cycle exited before the deadline
        """
        if self._shutdown_done:
            return True
        self._shutdown_done = True
        started = time.monotonic()

        clean = self.scheduler.stop()
        self.ledger.set_running(False)
        self.risk.log_summary(self.ledger.state)
        self.notifier.bot_stopped(reason)

        if self.health_server:
            self.health_server.stop()
            self.health_server = None
        self.instance_lock.release()
        logger.info(f"Shutdown complete ({reason}) in {time.monotonic() - started:.2f}s")
        return clean


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Momentum position bot")
    parser.add_argument("--config-dir", default="config", help="Config directory")
    parser.add_argument("--once", action="store_true", help="Run one monitor and one signal cycle, then exit")
    parser.add_argument("--liquidate", action="store_true", help="Close all open positions and exit")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        bot = TradingBot(config_dir=args.config_dir)
    except (ConfigError, RuntimeError) as e:
        logger.error(str(e))
        sys.exit(1)

    if args.liquidate:
        bot.liquidate()
    elif args.once:
        bot.run_once()
    else:
        bot.run_forever()


if __name__ == "__main__":
    main()
