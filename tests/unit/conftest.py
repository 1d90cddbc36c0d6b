"""Shared fixtures for unit tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from bidgate.auction.admission import BidAdmissionService
from bidgate.auction.tokens import TokenService
from bidgate.auction.windows import AuctionWindowReader
from bidgate.storage.in_memory import InMemoryStateStore, InMemoryStorage

ZONE = ZoneInfo("America/Mexico_City")
NOW = datetime(2026, 6, 1, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class StaticParticipants:
    def __init__(self, allowed: set[tuple[str, str]]) -> None:
        self.allowed = allowed

    async def is_participant(self, auction_id: str, bidder_id: str) -> bool:
        return (auction_id, bidder_id) in self.allowed


def wall_clock(instant: datetime) -> str:
    """Render a UTC instant the way the auction table stores it."""
    return instant.astimezone(ZONE).strftime("%Y-%m-%d %H:%M:%S")


def auction_row(
    auction_id: str,
    *,
    starts_at: datetime,
    ends_at: datetime,
    base_price: str = "1000",
    min_increment: str = "100",
) -> dict[str, Any]:
    return {
        "id_subasta": auction_id,
        "precio_base": base_price,
        "monto_minimo_puja": min_increment,
        "inicio": wall_clock(starts_at),
        "fin": wall_clock(ends_at),
        "estado": "activa",
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage(
        auctions=[
            auction_row("open", starts_at=NOW - timedelta(hours=1), ends_at=NOW + timedelta(hours=2)),
            auction_row("future", starts_at=NOW + timedelta(hours=1), ends_at=NOW + timedelta(hours=3)),
            auction_row("ended", starts_at=NOW - timedelta(hours=3), ends_at=NOW - timedelta(hours=1)),
        ]
    )


@pytest.fixture
def state(clock: FakeClock) -> InMemoryStateStore:
    return InMemoryStateStore(clock=clock, lock_wait_seconds=0.5)


@pytest.fixture
def windows(storage: InMemoryStorage) -> AuctionWindowReader:
    return AuctionWindowReader(storage, ZONE)


@pytest.fixture
def token_service(windows, state, clock) -> TokenService:
    return TokenService(windows, state, clock=clock, max_activation_lag_seconds=5.0)


@pytest.fixture
def participants() -> StaticParticipants:
    return StaticParticipants(
        {
            ("open", "alice"),
            ("open", "bob"),
            ("future", "alice"),
        }
    )


@pytest.fixture
def admission(token_service, participants, state, storage, clock) -> BidAdmissionService:
    return BidAdmissionService(token_service, participants, state, storage, clock=clock)
