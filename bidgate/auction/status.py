"""Read-only views of an auction: current price and, once ended, the winner."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from ..storage import BidCursor, BidLedger
from ..transport.timestamps import utcnow
from .admission import minimum_bid
from .models import BidRecord
from .selection import select_winner
from .windows import AuctionWindowReader


class AuctionStillOpen(ValueError):
    """Raised when a winner is requested before the auction ends."""


class AuctionStatusService:
    def __init__(
        self,
        windows: AuctionWindowReader,
        cursor: BidCursor,
        ledger: BidLedger,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._windows = windows
        self._cursor = cursor
        self._ledger = ledger
        self._clock = clock

    async def status(self, auction_id: str) -> dict[str, Any]:
        window = await self._windows.get_window(auction_id)
        now = self._clock()
        current = await self._cursor.get_cursor(auction_id)
        if now < window.starts_at:
            phase = "scheduled"
        elif now < window.ends_at:
            phase = "open"
        else:
            phase = "ended"
        return {
            "window": window.as_dict(),
            "phase": phase,
            "last_bid": str(current) if current is not None else None,
            "minimum_bid": str(minimum_bid(window.snapshot(), current)),
        }

    async def winner(self, auction_id: str) -> BidRecord | None:
        """The ledger, not the cursor, decides the winner."""
        window = await self._windows.get_window(auction_id)
        if self._clock() < window.ends_at:
            raise AuctionStillOpen(f"auction {auction_id} has not ended")
        return select_winner(await self._ledger.list_bids(auction_id))
