"""
Strategy: Momentum Signals

Token discovery and entry signal scoring:
- TokenScanner: DexScreener pairs filtered by liquidity, age and volume trend
- SentimentAnalyzer: LunarCrush galaxy score (0-100, neutral 50)
- SignalDetector: momentum + resistance breakout + sentiment strength score
- MomentumSignalSource: glues the three into EntryCandidates for the bot
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from core.interfaces import SignalSource
from core.market_data import DEXSCREENER_BASE
from core.models import EntryCandidate, utc_now

logger = logging.getLogger(__name__)

LUNARCRUSH_BASE = "https://lunarcrush.com/api4/public"
BIRDEYE_BASE = "https://public-api.birdeye.so"

NEUTRAL_SENTIMENT = 50.0


@dataclass
class TokenSnapshot:
    """One scanned token, from its DexScreener pair"""
    address: str
    symbol: str
    name: str
    liquidity_usd: float
    age_hours: float
    price_usd: float
    price_native: float
    volume_24h: float
    volume_4h: float
    volume_change_4h: float  # recent volume vs prior window, as a multiple
    price_change_4h: float   # percent
    market_cap: Optional[float] = None


@dataclass
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class Signal:
    token: TokenSnapshot
    has_momentum: bool
    has_breakout: bool
    sentiment_score: float
    strength: int
    detected_at: datetime = field(default_factory=utc_now)


class TokenScanner:
    """
    Scan DexScreener for Solana tokens worth watching.

    A token qualifies when liquidity, pair age, recent volume and volume
    trend all clear their minimums. Results are sorted by volume trend,
    strongest first, and cached for `refresh_seconds`.
    """

    def __init__(
        self,
        base_url: str = DEXSCREENER_BASE,
        chain_id: str = "solana",
        query: str = "SOL",
        min_liquidity_usd: float = 1_000_000,
        min_age_hours: float = 24,
        min_volume_4h_usd: float = 50_000,
        min_volume_trend: float = 1.5,
        refresh_seconds: float = 300,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self.query = query
        self.min_liquidity_usd = min_liquidity_usd
        self.min_age_hours = min_age_hours
        self.min_volume_4h_usd = min_volume_4h_usd
        self.min_volume_trend = min_volume_trend
        self.refresh_seconds = refresh_seconds
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock
        self._cache: List[TokenSnapshot] = []
        self._cached_at: Optional[float] = None

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]], timeout: float = 10.0) -> "TokenScanner":
        cfg = cfg or {}
        return cls(
            base_url=cfg.get("base_url", DEXSCREENER_BASE),
            chain_id=cfg.get("chain_id", "solana"),
            query=cfg.get("query", "SOL"),
            min_liquidity_usd=float(cfg.get("min_liquidity_usd", 1_000_000)),
            min_age_hours=float(cfg.get("min_age_hours", 24)),
            min_volume_4h_usd=float(cfg.get("min_volume_4h_usd", 50_000)),
            min_volume_trend=float(cfg.get("min_volume_trend", 1.5)),
            refresh_seconds=float(cfg.get("token_refresh_seconds", 300)),
            timeout=timeout,
        )

    def scan(self, force: bool = False) -> List[TokenSnapshot]:
        """Qualifying tokens, from cache when still fresh."""
        now = self._clock()
        if not force and self._cached_at is not None and now - self._cached_at < self.refresh_seconds:
            return list(self._cache)

        try:
            r = self.session.get(f"{self.base_url}/search", params={"q": self.query}, timeout=self.timeout)
            r.raise_for_status()
            pairs = (r.json() or {}).get("pairs") or []
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Token scan failed: {e}")
            return list(self._cache)

        qualified = []
        for pair in pairs:
            if pair.get("chainId") != self.chain_id:
                continue
            token = self.parse_pair(pair, now_ms=now * 1000)
            if token and self.meets_criteria(token):
                qualified.append(token)

        qualified.sort(key=lambda t: t.volume_change_4h, reverse=True)
        self._cache = qualified
        self._cached_at = now
        logger.info(f"Token scan: {len(qualified)} qualifying tokens")
        return list(qualified)

    @staticmethod
    def parse_pair(pair: Dict[str, Any], now_ms: float) -> Optional[TokenSnapshot]:
        try:
            base = pair.get("baseToken") or {}
            volume = pair.get("volume") or {}
            created_ms = float(pair.get("pairCreatedAt") or 0)
            vol_24h = float(volume.get("h24") or 0)
            # DexScreener reports h6 as its most recent multi-hour window
            vol_recent = float(volume.get("h6") or 0)
            vol_prior = max(vol_24h / 6 - vol_recent, 0.0)
            return TokenSnapshot(
                address=base.get("address") or "",
                symbol=base.get("symbol") or "UNKNOWN",
                name=base.get("name") or "",
                liquidity_usd=float((pair.get("liquidity") or {}).get("usd") or 0),
                age_hours=(now_ms - created_ms) / 3_600_000,
                price_usd=float(pair.get("priceUsd") or 0),
                price_native=float(pair.get("priceNative") or 0),
                volume_24h=vol_24h,
                volume_4h=vol_recent,
                volume_change_4h=vol_recent / vol_prior if vol_prior > 0 else 1.0,
                price_change_4h=float((pair.get("priceChange") or {}).get("h6") or 0),
                market_cap=pair.get("marketCap"),
            )
        except (TypeError, ValueError) as e:
            logger.debug(f"Unparseable pair skipped: {e}")
            return None

    def meets_criteria(self, token: TokenSnapshot) -> bool:
        if not token.address or token.price_native <= 0:
            return False
        if token.liquidity_usd < self.min_liquidity_usd:
            return False
        if token.age_hours < self.min_age_hours:
            return False
        if token.volume_4h < self.min_volume_4h_usd:
            return False
        return token.volume_change_4h >= self.min_volume_trend


class SentimentAnalyzer:
    """LunarCrush social sentiment. Without an API key every score is neutral."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = LUNARCRUSH_BASE,
        cache_ttl_seconds: float = 300,
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.cache_ttl_seconds = cache_ttl_seconds
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache: Dict[str, Tuple[float, float]] = {}
        if not self.api_key:
            logger.warning("LunarCrush API key not set; sentiment defaults to neutral (50)")

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]], timeout: float = 8.0) -> "SentimentAnalyzer":
        cfg = cfg or {}
        return cls(
            api_key=os.getenv(cfg.get("api_key_env", "LUNARCRUSH_API_KEY")),
            base_url=cfg.get("base_url", LUNARCRUSH_BASE),
            cache_ttl_seconds=float(cfg.get("cache_ttl_seconds", 300)),
            timeout=timeout,
        )

    def score(self, symbol: str) -> float:
        if not self.api_key:
            return NEUTRAL_SENTIMENT

        cached = self._cache.get(symbol)
        if cached and time.monotonic() - cached[0] < self.cache_ttl_seconds:
            return cached[1]

        try:
            r = self.session.get(
                f"{self.base_url}/coins/{symbol.lower()}/v1",
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = (r.json() or {}).get("data")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Sentiment unavailable for {symbol}: {e}")
            return NEUTRAL_SENTIMENT

        if not data:
            return NEUTRAL_SENTIMENT
        raw = data.get("galaxy_score")
        if raw is None:
            raw = data.get("alt_rank", NEUTRAL_SENTIMENT)
        try:
            value = min(100.0, max(0.0, float(raw)))
        except (TypeError, ValueError):
            return NEUTRAL_SENTIMENT
        self._cache[symbol] = (time.monotonic(), value)
        return value

    @staticmethod
    def label(score: float) -> str:
        if score >= 75:
            return "bullish"
        if score >= 55:
            return "slightly bullish"
        if score >= 45:
            return "neutral"
        if score >= 25:
            return "slightly bearish"
        return "bearish"


class SignalDetector:
    """
    Score a token for entry.

    strength = 40 (momentum) + 35 (breakout) + sentiment * 0.25, rounded.

    Momentum: volume trend >= threshold and positive 4h price change.
    Breakout: last close of the recent 1h candles clears the older candles'
    high by `breakout_margin`. When OHLCV is unavailable, a 4h price change
    of at least `fallback_breakout_pct` counts as a breakout.
    """

    MOMENTUM_WEIGHT = 40
    BREAKOUT_WEIGHT = 35
    SENTIMENT_WEIGHT = 25

    def __init__(
        self,
        base_url: str = BIRDEYE_BASE,
        api_key: str = "public",
        lookback_hours: int = 48,
        recent_candles: int = 4,
        breakout_margin: float = 0.01,
        fallback_breakout_pct: float = 5.0,
        min_volume_trend: float = 1.5,
        min_sentiment: float = 50,
        min_strength: float = 70,
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.lookback_hours = lookback_hours
        self.recent_candles = recent_candles
        self.breakout_margin = breakout_margin
        self.fallback_breakout_pct = fallback_breakout_pct
        self.min_volume_trend = min_volume_trend
        self.min_sentiment = min_sentiment
        self.min_strength = min_strength
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]], timeout: float = 8.0) -> "SignalDetector":
        cfg = cfg or {}
        return cls(
            base_url=cfg.get("birdeye_base_url", BIRDEYE_BASE),
            api_key=os.getenv(cfg.get("birdeye_api_key_env", "BIRDEYE_API_KEY")) or "public",
            lookback_hours=int(cfg.get("lookback_hours", 48)),
            breakout_margin=float(cfg.get("breakout_margin", 0.01)),
            fallback_breakout_pct=float(cfg.get("fallback_breakout_pct", 5.0)),
            min_volume_trend=float(cfg.get("min_volume_trend", 1.5)),
            min_sentiment=float(cfg.get("min_sentiment", 50)),
            min_strength=float(cfg.get("min_strength", 70)),
            timeout=timeout,
        )

    def evaluate(self, token: TokenSnapshot, sentiment_score: float) -> Signal:
        has_momentum = self.check_momentum(token)
        has_breakout = self.check_breakout(token)

        strength = 0.0
        if has_momentum:
            strength += self.MOMENTUM_WEIGHT
        if has_breakout:
            strength += self.BREAKOUT_WEIGHT
        strength += sentiment_score / 100 * self.SENTIMENT_WEIGHT

        return Signal(
            token=token,
            has_momentum=has_momentum,
            has_breakout=has_breakout,
            sentiment_score=sentiment_score,
            strength=int(round(strength)),
        )

    def check_momentum(self, token: TokenSnapshot) -> bool:
        return token.volume_change_4h >= self.min_volume_trend and token.price_change_4h > 0

    def check_breakout(self, token: TokenSnapshot) -> bool:
        candles = self.fetch_candles(token.address)
        if candles is None:
            logger.debug(f"{token.symbol}: OHLCV unavailable, using 4h price change")
            return token.price_change_4h >= self.fallback_breakout_pct
        return self.is_breakout(candles)

    def is_breakout(self, candles: List[Candle]) -> bool:
        if len(candles) < self.recent_candles * 2:
            return False
        older = candles[:-self.recent_candles]
        resistance = max(c.high for c in older)
        close = candles[-1].close
        return close > resistance * (1 + self.breakout_margin)

    def fetch_candles(self, address: str) -> Optional[List[Candle]]:
        """1h candles over the lookback window, or None on any API failure."""
        now = int(time.time())
        params = {
            "address": address,
            "type": "1H",
            "time_from": now - self.lookback_hours * 3600,
            "time_to": now,
        }
        try:
            r = self.session.get(
                f"{self.base_url}/defi/ohlcv",
                params=params,
                headers={"X-API-KEY": self.api_key},
                timeout=self.timeout,
            )
            r.raise_for_status()
            items = ((r.json() or {}).get("data") or {}).get("items") or []
            return [
                Candle(
                    time=int(c.get("unixTime") or 0),
                    open=float(c.get("o") or 0),
                    high=float(c.get("h") or 0),
                    low=float(c.get("l") or 0),
                    close=float(c.get("c") or 0),
                    volume=float(c.get("v") or 0),
                )
                for c in items
            ]
        except (requests.exceptions.RequestException, ValueError, TypeError, AttributeError) as e:
            logger.debug(f"OHLCV fetch failed for {address[:8]}...: {e}")
            return None

    def is_entry_signal(self, signal: Signal) -> bool:
        return (
            signal.has_momentum
            and signal.has_breakout
            and signal.sentiment_score >= self.min_sentiment
            and signal.strength >= self.min_strength
        )


class MomentumSignalSource(SignalSource):
    """Scanner + sentiment + detector, yielding entry candidates strongest first."""

    def __init__(
        self,
        scanner: TokenScanner,
        sentiment: SentimentAnalyzer,
        detector: SignalDetector,
        max_tokens: int = 10,
    ):
        self.scanner = scanner
        self.sentiment = sentiment
        self.detector = detector
        self.max_tokens = max_tokens

    def candidates(self) -> List[EntryCandidate]:
        results = []
        for token in self.scanner.scan()[: self.max_tokens]:
            score = self.sentiment.score(token.symbol)
            signal = self.detector.evaluate(token, score)
            logger.debug(
                f"{token.symbol}: strength={signal.strength} momentum={signal.has_momentum} "
                f"breakout={signal.has_breakout} sentiment={score:.0f} ({self.sentiment.label(score)})"
            )
            if not self.detector.is_entry_signal(signal):
                continue
            logger.info(f"Entry signal: {token.symbol} strength={signal.strength}/100")
            results.append(
                EntryCandidate(
                    instrument=token.address,
                    symbol=token.symbol,
                    entry_price=token.price_native,
                    strength=signal.strength,
                    sentiment_score=score,
                    has_momentum=signal.has_momentum,
                    has_breakout=signal.has_breakout,
                    detected_at=signal.detected_at,
                )
            )
        results.sort(key=lambda c: c.strength, reverse=True)
        return results

    def market_snapshot(self, limit: int = 3) -> List[Dict[str, Any]]:
        return [
            {
                "symbol": t.symbol,
                "address": t.address,
                "price": t.price_native,
                "price_usd": t.price_usd,
                "price_change_4h": t.price_change_4h,
                "volume_change_4h": round(t.volume_change_4h, 2),
            }
            for t in self.scanner.scan()[:limit]
        ]
