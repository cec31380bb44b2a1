"""Alerting helpers for chat/webhook notifications."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import socket
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    INFO = 10
    SUCCESS = 15
    WARNING = 20
    CRITICAL = 30

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name.lower()

    @classmethod
    def from_string(cls, value: str, default: Optional["AlertSeverity"] = None) -> "AlertSeverity":
        if not value:
            return default or cls.WARNING
        normalized = value.strip().lower()
        for member in cls:
            if member.name.lower() == normalized:
                return member
        return default or cls.WARNING


SEVERITY_PREFIX = {
    AlertSeverity.INFO: "[info]",
    AlertSeverity.SUCCESS: "[ok]",
    AlertSeverity.WARNING: "[warn]",
    AlertSeverity.CRITICAL: "[CRITICAL]",
}


@dataclass
class AlertConfig:
    enabled: bool
    webhook_url: Optional[str]
    min_severity: AlertSeverity
    dry_run: bool
    timeout: float = 5.0
    dedupe_seconds: float = 60.0  # Dedupe identical alerts within 60s
    bot_name: str = "momentum-bot"
    chat_id: Optional[str] = None  # Telegram-style endpoints need a chat id in the payload


class AlertService:
    """
    Send notifications for trading events to a webhook.

    Features:
    - Severity floor
    - Deduplication: suppress identical alerts within the dedupe window
    - Dry-run mode that only logs
    """

    def __init__(self, config: AlertConfig) -> None:
        self._config = config
        self._enabled = bool(config.enabled and (config.webhook_url or config.dry_run))
        if config.enabled and not config.webhook_url and not config.dry_run:
            logger.warning("Alerting enabled but no webhook URL set; disabling alerts")
        self._last_sent: Dict[str, float] = {}
        self._dedupe_lock = threading.Lock()

    @classmethod
    def from_config(cls, raw_config: Optional[Dict[str, Any]]) -> "AlertService":
        raw_config = raw_config or {}

        webhook_url = raw_config.get("webhook_url")
        if webhook_url and "${" in webhook_url:
            webhook_url = os.path.expandvars(webhook_url)

        if not webhook_url:
            env_key = raw_config.get("webhook_env", "ALERT_WEBHOOK_URL")
            webhook_url = os.getenv(env_key, "")

        chat_id = raw_config.get("chat_id")
        if not chat_id and raw_config.get("chat_id_env"):
            chat_id = os.getenv(raw_config["chat_id_env"], "")

        config = AlertConfig(
            enabled=bool(raw_config.get("enabled", False)),
            webhook_url=webhook_url or None,
            min_severity=AlertSeverity.from_string(
                raw_config.get("min_severity", "info"),
                default=AlertSeverity.INFO,
            ),
            dry_run=bool(raw_config.get("dry_run", False)),
            timeout=float(raw_config.get("timeout_seconds", 5.0)),
            dedupe_seconds=float(raw_config.get("dedupe_seconds", 60.0)),
            bot_name=str(raw_config.get("bot_name", "momentum-bot")),
            chat_id=chat_id or None,
        )
        return cls(config)

    def is_enabled(self) -> bool:
        return self._enabled

    def notify(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send an alert. Returns True if it was delivered (or logged in dry-run).

        Delivery failures are logged and reported through the return value;
        they never raise.
        """
        if not self._enabled:
            return False
        if severity.value < self._config.min_severity.value:
            return False

        fingerprint = self._generate_fingerprint(severity, title, message)
        with self._dedupe_lock:
            now = time.monotonic()
            last = self._last_sent.get(fingerprint)
            if last is not None and now - last < self._config.dedupe_seconds:
                logger.debug(f"Alert deduped: {title} (fingerprint={fingerprint[:8]}...)")
                return False
            self._last_sent[fingerprint] = now
            self._cleanup(now)

        return self._send_alert(severity, title, message, context)

    def _generate_fingerprint(self, severity: AlertSeverity, title: str, message: str) -> str:
        content = f"{severity.name}|{title}|{message}"
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def _cleanup(self, now: float) -> None:
        """Drop expired fingerprints. Caller holds _dedupe_lock."""
        horizon = max(self._config.dedupe_seconds, 1.0) * 5
        stale = [fp for fp, ts in self._last_sent.items() if now - ts > horizon]
        for fp in stale:
            del self._last_sent[fp]

    def _send_alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]],
    ) -> bool:
        payload = self._build_payload(severity, title, message, context)

        if self._config.dry_run:
            logger.info("[ALERT:%s] %s - %s | %s", severity.name, title, message, context or {})
            return True

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._config.webhook_url,
            data=data,
            headers={"Content-Type": "application/json"},
        )

        try:
            with urllib.request.urlopen(request, timeout=self._config.timeout) as response:
                if response.status >= 400:
                    logger.error("Alert webhook returned HTTP %s for '%s'", response.status, title)
                    return False
        except (urllib.error.URLError, urllib.error.HTTPError, socket.timeout, OSError) as exc:
            logger.error("Failed to deliver alert '%s': %s", title, exc)
            return False
        return True

    def _build_payload(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        line_items = [f"{SEVERITY_PREFIX[severity]} [{self._config.bot_name}] {title}", message]
        if context:
            try:
                context_json = json.dumps(context, sort_keys=True)
            except TypeError:
                context_json = str(context)
            line_items.append(f"context={context_json}")
        payload: Dict[str, Any] = {"text": "\n".join(filter(None, line_items))}
        if self._config.chat_id:
            payload["chat_id"] = self._config.chat_id
        return payload


class TradeNotifier:
    """
    Fire-and-forget notification sink for the position engine.

    Every method swallows delivery problems: a failing chat endpoint must never
    change what the engine does next.
    """

    def __init__(self, alert_service: Optional[AlertService] = None):
        self._alerts = alert_service

    def _send(self, severity: AlertSeverity, title: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        logger.info("[notify] %s - %s", title, message.replace("\n", " | "))
        if self._alerts is None:
            return
        try:
            self._alerts.notify(severity, title, message, context)
        except Exception as exc:
            logger.warning("Notification '%s' failed: %s", title, exc)

    def bot_started(self, capital: float) -> None:
        self._send(AlertSeverity.INFO, "Bot started", f"capital: {capital:.4f}")

    def bot_stopped(self, reason: str) -> None:
        self._send(AlertSeverity.WARNING, "Bot stopped", f"reason: {reason}")

    def trade_entered(self, symbol: str, size: float, entry_price: float, stop_loss: float, take_profit: float) -> None:
        self._send(
            AlertSeverity.INFO,
            f"Entry: {symbol}",
            f"size: {size:.4f}\nprice: {entry_price:.8f}\nSL: {stop_loss:.8f} | TP: {take_profit:.8f}",
        )

    def trade_exited(self, symbol: str, pnl: float, reason: str, tx_id: Optional[str] = None) -> None:
        severity = AlertSeverity.SUCCESS if pnl >= 0 else AlertSeverity.WARNING
        message = f"reason: {reason}\nPnL: {pnl:+.4f}"
        if tx_id:
            message += f"\ntx: {tx_id}"
        self._send(severity, f"Exit: {symbol}", message)

    def entry_rejected(self, symbol: str, reason: str, risk_score: Optional[float] = None) -> None:
        message = f"reason: {reason}"
        if risk_score is not None:
            message += f"\nscore: {risk_score:.0f}/1000"
        self._send(AlertSeverity.WARNING, f"Safety check rejected: {symbol}", message)

    def portfolio_halted(self, total_pnl: float) -> None:
        self._send(
            AlertSeverity.CRITICAL,
            "Portfolio stop triggered",
            f"total loss: {total_pnl:.4f}\nnew entries disabled; open positions still monitored",
        )

    def heartbeat(self, capital: float, open_positions: int, total_pnl: float) -> None:
        self._send(
            AlertSeverity.INFO,
            "Heartbeat",
            f"capital: {capital:.4f} | PnL: {total_pnl:+.4f}\npositions: {open_positions}",
        )

    def error(self, context: str, err: Any) -> None:
        self._send(AlertSeverity.CRITICAL, f"Error: {context}", str(err))


__all__ = ["AlertConfig", "AlertService", "AlertSeverity", "TradeNotifier"]
