"""
Core: Execution

Paper order executor. Fills market buys/sells at the live price with a
configured slippage and fee, so the whole position lifecycle can run end to
end without touching a venue. Live swap routing is a separate collaborator
behind the same OrderExecutor interface.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.interfaces import OrderExecutor, PriceSource
from core.models import BuyResult, SellResult

logger = logging.getLogger(__name__)


@dataclass
class PaperFillConfig:
    """Simulated execution costs"""
    slippage_bps: float = 100.0  # 1% adverse price per fill
    fee_bps: float = 0.0

    @classmethod
    def from_policy(cls, policy: Optional[Dict[str, Any]]) -> "PaperFillConfig":
        cfg = (policy or {}).get("execution", {}) or {}
        return cls(
            slippage_bps=float(cfg.get("slippage_bps", 100.0)),
            fee_bps=float(cfg.get("fee_bps", 0.0)),
        )


class PaperExecutor(OrderExecutor):
    """
    Simulated market-order executor.

    buy:  quantity = amount * (1 - fee) / (price * (1 + slippage))
    sell: proceeds = quantity * price * (1 - slippage) * (1 - fee)

    A missing price is a failed fill, the same as an unreachable venue.
    """

    def __init__(self, price_source: PriceSource, config: Optional[PaperFillConfig] = None):
        self.price_source = price_source
        self.config = config or PaperFillConfig()
        self.fills = 0
        logger.info(
            "PaperExecutor initialized: slippage=%.0fbps fee=%.0fbps",
            self.config.slippage_bps, self.config.fee_bps,
        )

    @property
    def _slippage(self) -> float:
        return self.config.slippage_bps / 10_000.0

    @property
    def _fee(self) -> float:
        return self.config.fee_bps / 10_000.0

    def buy(self, instrument: str, base_amount: float) -> BuyResult:
        if base_amount <= 0:
            return BuyResult(success=False, error=f"invalid buy amount {base_amount}")
        price = self.price_source.current_price(instrument)
        if not price or price <= 0:
            return BuyResult(success=False, error=f"no price for {instrument}")

        fill_price = price * (1 + self._slippage)
        quantity = base_amount * (1 - self._fee) / fill_price
        self.fills += 1
        tx_id = f"paper-{uuid.uuid4().hex[:16]}"
        logger.info(f"PAPER BUY {instrument[:8]}... {base_amount:.4f} @ {fill_price:.8f} -> {quantity:.6f}")
        return BuyResult(success=True, filled_quantity=quantity, fill_price=fill_price, tx_id=tx_id)

    def sell(self, instrument: str, quantity: float) -> SellResult:
        if quantity <= 0:
            return SellResult(success=False, error=f"invalid sell quantity {quantity}")
        price = self.price_source.current_price(instrument)
        if not price or price <= 0:
            return SellResult(success=False, error=f"no price for {instrument}")

        fill_price = price * (1 - self._slippage)
        proceeds = quantity * fill_price * (1 - self._fee)
        self.fills += 1
        tx_id = f"paper-{uuid.uuid4().hex[:16]}"
        logger.info(f"PAPER SELL {instrument[:8]}... {quantity:.6f} @ {fill_price:.8f} -> {proceeds:.4f}")
        return SellResult(success=True, proceeds=proceeds, fill_price=fill_price, tx_id=tx_id)
