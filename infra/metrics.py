"""Prometheus-backed metrics hooks for the position engine and its cycles."""

from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


class MetricsRecorder:
    """
    Expose ledger and cycle stats via Prometheus.

    Each recorder owns its CollectorRegistry, so several instances (tests,
    tools) never collide on metric names. When disabled every hook is a no-op.
    """

    def __init__(self, enabled: bool = True, port: int = 9100) -> None:
        self._enabled = bool(enabled)
        self._port = int(port)
        self._started = False
        self.registry: Optional[CollectorRegistry] = None

        if not self._enabled:
            return

        self.registry = CollectorRegistry()
        self._open_positions = Gauge(
            "bot_open_positions", "Number of currently open positions", registry=self.registry,
        )
        self._capital = Gauge(
            "bot_capital", "Available capital in base currency", registry=self.registry,
        )
        self._total_pnl = Gauge(
            "bot_total_pnl", "Cumulative realized PnL in base currency", registry=self.registry,
        )
        self._halted = Gauge(
            "bot_portfolio_halted", "Portfolio halt state (0=trading, 1=halted)", registry=self.registry,
        )
        self._entries = Counter(
            "bot_entries_total", "Positions opened", registry=self.registry,
        )
        self._exits = Counter(
            "bot_exits_total", "Positions closed by reason", labelnames=("reason", "fallback"),
            registry=self.registry,
        )
        self._entry_rejections = Counter(
            "bot_entry_rejections_total", "Entry attempts aborted by stage",
            labelnames=("stage",), registry=self.registry,
        )
        self._stop_updates = Counter(
            "bot_trailing_stop_updates_total", "Trailing stop ratchets", registry=self.registry,
        )
        self._price_skips = Counter(
            "bot_price_unavailable_total", "Positions skipped because no price was available",
            registry=self.registry,
        )
        self._cycle_duration = Summary(
            "bot_cycle_duration_seconds", "Duration of periodic cycles",
            labelnames=("cycle",), registry=self.registry,
        )
        self._cycle_failures = Counter(
            "bot_cycle_failures_total", "Cycles that raised", labelnames=("cycle",),
            registry=self.registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        start_http_server(self._port, registry=self.registry)
        self._started = True
        logger.info("Prometheus metrics exporter listening on :%s", self._port)

    def record_ledger(self, capital: float, total_pnl: float, open_positions: int, halted: bool) -> None:
        if not self._enabled:
            return
        self._capital.set(capital)
        self._total_pnl.set(total_pnl)
        self._open_positions.set(open_positions)
        self._halted.set(1 if halted else 0)

    def record_entry(self) -> None:
        if self._enabled:
            self._entries.inc()

    def record_exit(self, reason: str, fallback: bool = False) -> None:
        if self._enabled:
            self._exits.labels(reason=reason, fallback=str(bool(fallback)).lower()).inc()

    def record_entry_rejection(self, stage: str) -> None:
        if self._enabled:
            self._entry_rejections.labels(stage=stage).inc()

    def record_stop_update(self) -> None:
        if self._enabled:
            self._stop_updates.inc()

    def record_price_skip(self) -> None:
        if self._enabled:
            self._price_skips.inc()

    def record_cycle(self, cycle: str, duration_seconds: float, failed: bool = False) -> None:
        if not self._enabled:
            return
        self._cycle_duration.labels(cycle=cycle).observe(duration_seconds)
        if failed:
            self._cycle_failures.labels(cycle=cycle).inc()


__all__ = ["MetricsRecorder"]
