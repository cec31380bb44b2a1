"""
Collaborator contracts consumed by the position engine.

The engine depends only on these interfaces; concrete adapters live in
core.market_data, core.safety, core.execution, strategy.signals and
infra.state_store, and tests substitute stubs.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from core.models import BuyResult, EntryCandidate, SafetyVerdict, SellResult


class PriceSource(ABC):
    @abstractmethod
    def current_price(self, instrument: str) -> Optional[float]:
        """Current price in base currency, or None when unavailable."""


class SafetyScreener(ABC):
    @abstractmethod
    def assess(self, instrument: str) -> SafetyVerdict:
        """Pre-trade safety verdict for an instrument."""


class OrderExecutor(ABC):
    @abstractmethod
    def buy(self, instrument: str, base_amount: float) -> BuyResult:
        ...

    @abstractmethod
    def sell(self, instrument: str, quantity: float) -> SellResult:
        ...


class SignalSource(ABC):
    @abstractmethod
    def candidates(self) -> List[EntryCandidate]:
        """Entry candidates for this evaluation cycle, strongest first."""

    def market_snapshot(self, limit: int = 3) -> List[Dict[str, Any]]:
        """Optional summary of the tokens under watch, for market notes."""
        return []


class LedgerStore(ABC):
    @abstractmethod
    def save(self, state: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        ...

    def describe(self) -> str:
        return self.__class__.__name__
