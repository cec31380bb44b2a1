"""Shared exception types for core trading logic."""

from typing import Optional


class CollaboratorUnavailable(RuntimeError):
    """Raised when a price, safety, execution or storage collaborator cannot answer."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        message = source if original is None else f"{source}: {original}"
        super().__init__(message)
        self.source = source
        self.original = original


class LedgerError(RuntimeError):
    """Raised when a ledger mutation would break its consistency rules."""


class ConfigError(ValueError):
    """Raised when app.yaml / policy.yaml fail validation at startup."""
