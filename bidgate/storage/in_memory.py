"""In-memory backends for tokens, cursors, bids and auction windows."""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

from ..auction.models import BidRecord
from ..transport.timestamps import utcnow
from .errors import AuctionNotFound, CursorBusy


@dataclass
class _Entry:
    value: Any
    expires_at: datetime


class _HeldLock:
    """Per-auction lock, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0

    async def owned(self) -> bool:
        return self.lock.locked()


class InMemoryStateStore:
    """Token registry and last-bid cursor with expiring entries.

    Expiry is evaluated lazily against the injected clock, which lets tests
    move time forward without sleeping.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        lock_wait_seconds: float = 2.0,
    ) -> None:
        self._clock = clock
        self._lock_wait = lock_wait_seconds
        self._active: dict[str, _Entry] = {}
        self._pending: dict[str, _Entry] = {}
        self._index: dict[str, _Entry] = {}
        self._pending_index: dict[str, _Entry] = {}
        self._cursors: dict[str, _Entry] = {}
        self._auction_locks: dict[str, _HeldLock] = {}
        self._lock = asyncio.Lock()

    def _expiry(self, ttl_seconds: int) -> datetime:
        return self._clock() + timedelta(seconds=ttl_seconds)

    def _live(self, entries: dict[str, _Entry], key: str) -> Any:
        entry = entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            entries.pop(key, None)
            return None
        return entry.value

    def _live_items(self, entries: dict[str, _Entry]) -> list[tuple[str, Any]]:
        items = []
        for key in list(entries):
            value = self._live(entries, key)
            if value is not None:
                items.append((key, value))
        return items

    # Token registry

    async def put_active(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> None:
        async with self._lock:
            self._active[token] = _Entry(payload, self._expiry(ttl_seconds))
            self._index[auction_id] = _Entry(token, self._expiry(ttl_seconds))

    async def get_active(self, token: str) -> bytes | None:
        async with self._lock:
            return self._live(self._active, token)

    async def put_pending(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> None:
        async with self._lock:
            self._pending[token] = _Entry(payload, self._expiry(ttl_seconds))
            self._pending_index[auction_id] = _Entry(token, self._expiry(ttl_seconds))

    async def get_pending(self, token: str) -> bytes | None:
        async with self._lock:
            return self._live(self._pending, token)

    async def promote(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> bool:
        async with self._lock:
            self._pending.pop(token, None)
            if self._live(self._active, token) is not None:
                return False
            self._active[token] = _Entry(payload, self._expiry(ttl_seconds))
            self._index[auction_id] = _Entry(token, self._expiry(ttl_seconds))
            return True

    async def indexed_token(self, auction_id: str) -> str | None:
        async with self._lock:
            return self._live(self._index, auction_id)

    async def indexed_pending_token(self, auction_id: str) -> str | None:
        async with self._lock:
            return self._live(self._pending_index, auction_id)

    async def scan_active(self) -> list[tuple[str, bytes]]:
        async with self._lock:
            return self._live_items(self._active)

    async def scan_pending(self) -> list[tuple[str, bytes]]:
        async with self._lock:
            return self._live_items(self._pending)

    # Last-bid cursor

    @asynccontextmanager
    async def hold(self, auction_id: str) -> AsyncIterator[_HeldLock]:
        held = self._auction_locks.get(auction_id)
        if held is None:
            held = self._auction_locks[auction_id] = _HeldLock()
        held.users += 1
        try:
            try:
                await asyncio.wait_for(held.lock.acquire(), timeout=self._lock_wait)
            except asyncio.TimeoutError as exc:
                raise CursorBusy(f"auction {auction_id} is busy") from exc
            try:
                yield held
            finally:
                held.lock.release()
        finally:
            held.users -= 1
            if held.users == 0:
                self._auction_locks.pop(auction_id, None)

    async def get_cursor(self, auction_id: str) -> Decimal | None:
        async with self._lock:
            return self._live(self._cursors, auction_id)

    async def compare_and_set(
        self,
        auction_id: str,
        expected: Decimal | None,
        amount: Decimal | None,
        ttl_seconds: int,
    ) -> bool:
        async with self._lock:
            if self._live(self._cursors, auction_id) != expected:
                return False
            if amount is None:
                self._cursors.pop(auction_id, None)
                return True
            self._cursors[auction_id] = _Entry(amount, self._expiry(ttl_seconds))
            return True

    async def close(self) -> None:
        return None


class InMemoryStorage:
    """Bid ledger and auction window store kept in process memory."""

    def __init__(self, auctions: Iterable[Mapping[str, Any]] = ()) -> None:
        self._windows: dict[str, dict[str, Any]] = {}
        for row in auctions:
            self._windows[str(row["id_subasta"])] = dict(row)
        self._bids: dict[str, list[BidRecord]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def add_window(self, row: Mapping[str, Any]) -> None:
        async with self._lock:
            self._windows[str(row["id_subasta"])] = dict(row)

    async def fetch_window(self, auction_id: str) -> dict[str, Any]:
        async with self._lock:
            try:
                return deepcopy(self._windows[auction_id])
            except KeyError as exc:
                raise AuctionNotFound(auction_id) from exc

    async def append(
        self,
        auction_id: str,
        bidder_id: str,
        amount: Decimal,
        placed_at: datetime,
    ) -> BidRecord:
        record = BidRecord(
            bid_id=str(uuid.uuid4()),
            auction_id=auction_id,
            bidder_id=bidder_id,
            amount=amount,
            placed_at=placed_at,
        )
        async with self._lock:
            self._bids[auction_id].append(record)
        return record

    async def list_bids(self, auction_id: str) -> list[BidRecord]:
        async with self._lock:
            return list(self._bids.get(auction_id, []))

    async def count_bids(self) -> int:
        async with self._lock:
            return sum(len(bids) for bids in self._bids.values())
