"""
Pytest configuration and fixtures for the position engine tests.
"""
import pytest

from core.ledger import PositionLedger
from core.position_manager import ExitPolicy, PositionManager
from core.risk import RiskConfig, RiskPolicy
from tests.helpers import InMemoryStore, RecordingNotifier, StubExecutor, StubPriceSource, StubScreener


@pytest.fixture
def risk():
    return RiskPolicy(RiskConfig())


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def ledger(store):
    return PositionLedger.restore(store, initial_capital=0.84)


@pytest.fixture
def prices():
    return StubPriceSource()


@pytest.fixture
def screener():
    return StubScreener()


@pytest.fixture
def executor(prices):
    return StubExecutor(prices)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(ledger, risk, prices, screener, executor, notifier):
    return PositionManager(
        ledger=ledger,
        risk=risk,
        price_source=prices,
        screener=screener,
        executor=executor,
        notifier=notifier,
        exit_policy=ExitPolicy(),
    )
