"""Unit tests for auction status, winner selection and configuration."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from bidgate.auction.models import BidRecord
from bidgate.auction.selection import select_winner
from bidgate.auction.status import AuctionStatusService, AuctionStillOpen
from bidgate.config import get_server_config, parse_server_config
from bidgate.storage import build_backends
from bidgate.storage.in_memory import InMemoryStateStore, InMemoryStorage
from bidgate.storage.redis import RedisStateStore

from .conftest import NOW


def _bid(bid_id: str, amount: str, seconds: int) -> BidRecord:
    return BidRecord(bid_id, "ended", "alice", Decimal(amount), NOW + timedelta(seconds=seconds))


class TestSelectWinner:
    def test_highest_amount_wins(self):
        bids = [_bid("a", "1000", 0), _bid("b", "1300", 5), _bid("c", "1200", 9)]
        assert select_winner(bids).bid_id == "b"

    def test_tie_goes_to_earliest(self):
        bids = [_bid("late", "1500", 30), _bid("early", "1500", 10)]
        assert select_winner(bids).bid_id == "early"

    def test_no_bids(self):
        assert select_winner([]) is None


@pytest.fixture
def status_service(windows, state, storage, clock) -> AuctionStatusService:
    return AuctionStatusService(windows, state, storage, clock=clock)


class TestAuctionStatus:
    @pytest.mark.asyncio
    async def test_open_auction_without_bids(self, status_service):
        status = await status_service.status("open")
        assert status["phase"] == "open"
        assert status["last_bid"] is None
        assert status["minimum_bid"] == "1000"

    @pytest.mark.asyncio
    async def test_minimum_follows_cursor(self, status_service, state):
        await state.compare_and_set("open", None, Decimal("1250"), 600)
        status = await status_service.status("open")
        assert status["last_bid"] == "1250"
        assert status["minimum_bid"] == "1350"

    @pytest.mark.asyncio
    async def test_phases(self, status_service):
        assert (await status_service.status("future"))["phase"] == "scheduled"
        assert (await status_service.status("ended"))["phase"] == "ended"

    @pytest.mark.asyncio
    async def test_winner_only_after_end(self, status_service, storage):
        with pytest.raises(AuctionStillOpen):
            await status_service.winner("open")

        assert await status_service.winner("ended") is None
        await storage.append("ended", "alice", Decimal("1000"), NOW - timedelta(hours=2))
        await storage.append("ended", "bob", Decimal("1100"), NOW - timedelta(hours=1, minutes=30))
        winner = await status_service.winner("ended")
        assert winner.bidder_id == "bob"


class TestConfig:
    def test_defaults(self):
        config = parse_server_config({})
        assert config.state.backend == "in_memory"
        assert config.participants.backend == "yaml"
        assert config.timezone == "America/Mexico_City"
        assert config.log_level == "INFO"
        assert config.tokens.sweep_interval_seconds == 1.0
        assert config.bids.max_clock_skew_ms == 5000

    def test_bundled_config_builds_in_memory_backends(self, monkeypatch):
        monkeypatch.delenv("BIDGATE_CONFIG_PATH", raising=False)
        get_server_config.cache_clear()
        try:
            backends = build_backends(get_server_config())
        finally:
            get_server_config.cache_clear()

        assert isinstance(backends.state, InMemoryStateStore)
        assert isinstance(backends.windows, InMemoryStorage)
        assert backends.ledger is backends.windows
        assert backends.postgres is None

    def test_redis_backend_selected(self):
        config = parse_server_config(
            {"state": {"backend": "redis", "options": {"url": "redis://localhost:6379/0"}}}
        )
        assert isinstance(build_backends(config).state, RedisStateStore)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError):
            build_backends(parse_server_config({"ledger": {"backend": "sqlite"}}))
