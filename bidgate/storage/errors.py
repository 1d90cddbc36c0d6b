"""Errors raised by storage backends."""

from __future__ import annotations


class AuctionNotFound(KeyError):
    """Raised when an auction id has no window in the auction store."""


class StorageUnavailable(RuntimeError):
    """Raised when a backing store cannot serve a request; safe to retry."""


class StateStoreError(StorageUnavailable):
    """Raised when the keyed token/cursor store cannot be reached."""


class LedgerWriteError(StorageUnavailable):
    """Raised when a bid could not be appended to the ledger."""


class CursorBusy(RuntimeError):
    """Raised when the per-auction admission lock is not acquired in time."""
