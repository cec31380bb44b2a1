"""
Core: Pre-trade Safety Screener

Token risk report from RugCheck, evaluated against a score ceiling and a list
of critical risk names. Used once per entry attempt.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import requests

from core.interfaces import SafetyScreener
from core.models import SafetyVerdict

logger = logging.getLogger(__name__)

RUGCHECK_BASE = "https://api.rugcheck.xyz/v1"

# "danger"-level risks with any of these names are rejected outright
DEFAULT_CRITICAL_RISKS = [
    "Freeze Authority still enabled",
    "Mint Authority still enabled",
    "Copycat token",
    "High holder concentration",
    "Low liquidity",
    "Honeypot",
    "Rugged",
]


class RugCheckScreener(SafetyScreener):
    """
    Score is 0-1000, higher is riskier. A token is unsafe when:
    - score > max_risk_score
    - a danger-level risk matches a critical name
    - two or more danger-level risks are reported

    When the API cannot be reached the verdict is unsafe unless fail_open is
    set, in which case the token passes with risk_score -1.
    """

    def __init__(
        self,
        base_url: str = RUGCHECK_BASE,
        max_risk_score: float = 500,
        critical_risks: Optional[List[str]] = None,
        cache_ttl_seconds: float = 600.0,
        timeout: float = 8.0,
        fail_open: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_risk_score = float(max_risk_score)
        self.critical_risks = [name.lower() for name in (critical_risks or DEFAULT_CRITICAL_RISKS)]
        self.cache_ttl_seconds = float(cache_ttl_seconds)
        self.timeout = timeout
        self.fail_open = fail_open
        self.session = session or requests.Session()
        self._cache: Dict[str, Tuple[float, SafetyVerdict]] = {}

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]], timeout: float = 8.0) -> "RugCheckScreener":
        cfg = cfg or {}
        return cls(
            base_url=cfg.get("base_url", RUGCHECK_BASE),
            max_risk_score=cfg.get("max_risk_score", 500),
            critical_risks=cfg.get("critical_risks"),
            cache_ttl_seconds=cfg.get("cache_ttl_seconds", 600),
            timeout=timeout,
            fail_open=bool(cfg.get("fail_open", False)),
        )

    def assess(self, instrument: str) -> SafetyVerdict:
        cached = self._cache.get(instrument)
        if cached and time.monotonic() - cached[0] < self.cache_ttl_seconds:
            return cached[1]

        url = f"{self.base_url}/tokens/{instrument}/report/summary"
        try:
            r = self.session.get(url, timeout=self.timeout)
            r.raise_for_status()
            data = r.json() or {}
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"RugCheck API error ({instrument[:8]}...): {e}")
            if self.fail_open:
                return SafetyVerdict(safe=True, risk_score=-1, reason="screener unavailable (fail-open)")
            return SafetyVerdict(safe=False, risk_score=-1, reason=f"screener unavailable: {e}")

        verdict = self.evaluate(data)
        logger.info(
            f"RugCheck {instrument[:8]}...: score={verdict.risk_score:.0f} "
            f"({self.label(verdict.risk_score)}) safe={verdict.safe}"
        )
        self._cache[instrument] = (time.monotonic(), verdict)
        return verdict

    def evaluate(self, report: Dict[str, Any]) -> SafetyVerdict:
        """Turn a RugCheck summary report into a verdict."""
        score = float(report.get("score", 999) if report.get("score") is not None else 999)
        risks = [
            {
                "name": r.get("name") or "Unknown",
                "level": r.get("level") or "info",
                "description": r.get("description") or "",
                "score": r.get("score") or 0,
            }
            for r in (report.get("risks") or [])
        ]
        dangers = [r for r in risks if r["level"] == "danger"]
        critical = next(
            (r for r in dangers if any(name in r["name"].lower() for name in self.critical_risks)),
            None,
        )

        if score > self.max_risk_score:
            return SafetyVerdict(False, score, f"risk score too high ({score:.0f}/1000)", risks)
        if critical is not None:
            return SafetyVerdict(False, score, f"critical risk detected: \"{critical['name']}\"", risks)
        if len(dangers) >= 2:
            return SafetyVerdict(False, score, f"{len(dangers)} danger-level risks", risks)
        return SafetyVerdict(True, score, None, risks)

    @staticmethod
    def label(score: float) -> str:
        if score < 0:
            return "unknown"
        if score < 200:
            return "safe"
        if score < 400:
            return "low risk"
        if score < 600:
            return "caution"
        return "dangerous"
