"""
Core: Market Data

Current token prices in base currency from the DexScreener public API.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from core.interfaces import PriceSource

logger = logging.getLogger(__name__)

DEXSCREENER_BASE = "https://api.dexscreener.com/latest/dex"


def best_pair(pairs: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the pair with the deepest USD liquidity."""
    if not pairs:
        return None
    return max(pairs, key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0.0))


class DexScreenerPriceSource(PriceSource):
    """
    Price feed backed by DexScreener token pairs.

    Uses `priceNative` of the deepest pair, i.e. the token price quoted in the
    pair's quote asset (SOL for the pairs this bot trades). Any transport or
    parse failure is reported as unavailable (None); the monitor retries on
    its next cycle.
    """

    def __init__(self, base_url: str = DEXSCREENER_BASE, timeout: float = 8.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def current_price(self, instrument: str) -> Optional[float]:
        url = f"{self.base_url}/tokens/{instrument}"
        try:
            r = self.session.get(url, timeout=self.timeout)
            r.raise_for_status()
            data = r.json() or {}
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"price fetch failed for {instrument[:8]}...: {e}")
            return None

        pair = best_pair(data.get("pairs") or [])
        if pair is None:
            logger.debug(f"no pairs listed for {instrument[:8]}...")
            return None

        try:
            price = float(pair.get("priceNative") or 0.0)
        except (TypeError, ValueError):
            return None
        return price if price > 0 else None
