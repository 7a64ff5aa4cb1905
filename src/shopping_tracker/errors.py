from __future__ import annotations

from typing import Optional


class ShoppingTrackerError(Exception):
    pass


class ValidationError(ShoppingTrackerError):
    """Input rejected locally, before any remote call."""


class StoreError(ShoppingTrackerError):
    """A remote store read or write failed."""

    def __init__(self, message: str, *, table: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.table = table
        self.status = status


class ScanError(ShoppingTrackerError):
    """The AI receipt scan failed (transport, HTTP status, or empty answer)."""


class ScanParseError(ScanError):
    """The model answered but no JSON object could be recovered from it."""

    def __init__(self, message: str, *, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class AuthError(ShoppingTrackerError):
    pass


class AuthCancelled(AuthError):
    """The user dismissed the local authenticator prompt."""
