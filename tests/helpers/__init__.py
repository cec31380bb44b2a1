"""Test helpers for the position engine test suite"""

from tests.helpers.stubs import (
    InMemoryStore,
    RecordingNotifier,
    StubExecutor,
    StubPriceSource,
    StubScreener,
    StubSignalSource,
    candidate,
)

__all__ = [
    "InMemoryStore",
    "RecordingNotifier",
    "StubExecutor",
    "StubPriceSource",
    "StubScreener",
    "StubSignalSource",
    "candidate",
]
