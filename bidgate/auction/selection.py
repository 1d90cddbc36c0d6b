"""Winner selection helpers."""

from __future__ import annotations

from typing import Iterable, Optional

from .models import BidRecord


def select_winner(bids: Iterable[BidRecord]) -> Optional[BidRecord]:
    # Highest amount wins; equal amounts go to the earlier bid.
    return max(bids, key=lambda bid: (bid.amount, -bid.placed_at.timestamp()), default=None)
