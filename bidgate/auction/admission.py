"""Bid admission: validate, sequence and record bids against the last-bid cursor."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable

from ..storage import (
    AdmissionLease,
    BidCursor,
    BidLedger,
    CursorBusy,
    LedgerWriteError,
    ParticipantRegistry,
    StorageUnavailable,
)
from ..transport.timestamps import utcnow
from .models import (
    Accepted,
    AdmissionResult,
    Rejected,
    RejectionReason,
    TokenSnapshot,
)
from .tokens import TokenService

logger = logging.getLogger(__name__)

_CURSOR_ATTEMPTS = 3


def minimum_bid(snapshot: TokenSnapshot, cursor: Decimal | None) -> Decimal:
    if cursor is None:
        return snapshot.base_price
    return cursor + snapshot.min_increment


def _busy() -> Rejected:
    return Rejected(
        RejectionReason.AUCTION_BUSY,
        "Auction is busy processing other bids, please retry.",
    )


class BidAdmissionService:
    """Only writer of the last-bid cursor and of accepted bid records.

    Admission runs under the auction's lock. The cursor is advanced first,
    by compare-and-set against the value the amount was checked against, and
    the bid is appended to the ledger afterwards. A moved cursor is re-read
    and the amount re-checked. A failed append puts the cursor back, so the
    ledger only ever holds bids that beat their predecessor and a rejected
    bid can be resubmitted without being recorded twice.
    """

    def __init__(
        self,
        tokens: TokenService,
        participants: ParticipantRegistry,
        cursor: BidCursor,
        ledger: BidLedger,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._tokens = tokens
        self._participants = participants
        self._cursor = cursor
        self._ledger = ledger
        self._clock = clock

    async def submit(
        self,
        token: str,
        amount: Decimal,
        bidder_id: str,
        requested_at: datetime | None = None,
    ) -> AdmissionResult:
        requested_at = requested_at or self._clock()
        snapshot = await self._tokens.resolve(token)
        if snapshot is None:
            return Rejected(RejectionReason.INVALID_OR_EXPIRED_TOKEN, "Token is invalid or expired.")
        if not await self._participants.is_participant(snapshot.auction_id, bidder_id):
            return Rejected(
                RejectionReason.NOT_A_PARTICIPANT,
                f"Bidder {bidder_id} is not registered for auction {snapshot.auction_id}.",
            )
        try:
            async with self._cursor.hold(snapshot.auction_id) as lease:
                return await self._admit(snapshot, amount, bidder_id, requested_at, lease)
        except CursorBusy as exc:
            logger.info("admission lock contention: %s", exc)
            return _busy()

    def _ttl_seconds(self, snapshot: TokenSnapshot) -> int:
        return max(int((snapshot.ends_at - self._clock()).total_seconds()), 1)

    async def _admit(
        self,
        snapshot: TokenSnapshot,
        amount: Decimal,
        bidder_id: str,
        requested_at: datetime,
        lease: AdmissionLease,
    ) -> AdmissionResult:
        auction_id = snapshot.auction_id
        current = await self._cursor.get_cursor(auction_id)
        for _ in range(_CURSOR_ATTEMPTS):
            minimum = minimum_bid(snapshot, current)
            if amount < minimum:
                return Rejected(
                    RejectionReason.AMOUNT_TOO_LOW,
                    f"Bid must be at least {minimum}.",
                    minimum=minimum,
                )
            if await self._cursor.compare_and_set(
                auction_id, current, amount, self._ttl_seconds(snapshot)
            ):
                break
            logger.warning("cursor for auction %s moved during admission; re-reading", auction_id)
            current = await self._cursor.get_cursor(auction_id)
        else:
            return _busy()

        try:
            still_held = await lease.owned()
        except StorageUnavailable as exc:
            logger.warning("could not confirm admission lock for auction %s: %s", auction_id, exc)
            still_held = False
        if not still_held:
            logger.warning("admission lock for auction %s lapsed before recording", auction_id)
            await self._restore(snapshot, amount, current)
            return _busy()

        try:
            bid = await self._ledger.append(auction_id, bidder_id, amount, requested_at)
        except LedgerWriteError as exc:
            logger.error("bid for auction %s not persisted", auction_id, exc_info=exc)
            await self._restore(snapshot, amount, current)
            return Rejected(
                RejectionReason.PERSISTENCE_ERROR,
                "Bid could not be recorded, please retry.",
            )
        logger.info("bid %s accepted for auction %s amount=%s", bid.bid_id, auction_id, amount)
        return Accepted(bid)

    async def _restore(
        self,
        snapshot: TokenSnapshot,
        amount: Decimal,
        previous: Decimal | None,
    ) -> None:
        auction_id = snapshot.auction_id
        try:
            restored = await self._cursor.compare_and_set(
                auction_id, amount, previous, self._ttl_seconds(snapshot)
            )
        except StorageUnavailable as exc:
            logger.error("cursor for auction %s left at unrecorded bid %s: %s", auction_id, amount, exc)
            return
        if not restored:
            logger.warning(
                "cursor for auction %s moved past unrecorded bid %s; left unchanged",
                auction_id,
                amount,
            )
