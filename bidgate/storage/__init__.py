"""Storage backend factory."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncContextManager, Callable, Mapping, Protocol

from ..auction.models import BidRecord
from ..config import ServerConfig, get_participants_path
from ..participants.registry import YamlParticipantRegistry
from ..transport.timestamps import utcnow
from .errors import (
    AuctionNotFound,
    CursorBusy,
    LedgerWriteError,
    StateStoreError,
    StorageUnavailable,
)
from .in_memory import InMemoryStateStore, InMemoryStorage
from .postgres import PostgresStorage
from .redis import RedisStateStore

__all__ = [
    "AdmissionLease",
    "AuctionNotFound",
    "Backends",
    "BidCursor",
    "BidLedger",
    "CursorBusy",
    "LedgerWriteError",
    "ParticipantRegistry",
    "StateStoreError",
    "StateStore",
    "StorageUnavailable",
    "TokenStore",
    "WindowStore",
    "build_backends",
]


class TokenStore(Protocol):
    async def put_active(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> None: ...

    async def get_active(self, token: str) -> bytes | None: ...

    async def put_pending(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> None: ...

    async def get_pending(self, token: str) -> bytes | None: ...

    async def promote(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> bool:
        """Make a pending token active; False when it was already active."""
        ...

    async def indexed_token(self, auction_id: str) -> str | None: ...

    async def indexed_pending_token(self, auction_id: str) -> str | None: ...

    async def scan_active(self) -> list[tuple[str, bytes]]: ...

    async def scan_pending(self) -> list[tuple[str, bytes]]: ...


class AdmissionLease(Protocol):
    async def owned(self) -> bool:
        """False once the lock has expired or been taken over."""
        ...


class BidCursor(Protocol):
    def hold(self, auction_id: str) -> AsyncContextManager[AdmissionLease]:
        """Per-auction admission lock; raises CursorBusy when not acquired in time."""
        ...

    async def get_cursor(self, auction_id: str) -> Decimal | None: ...

    async def compare_and_set(
        self,
        auction_id: str,
        expected: Decimal | None,
        amount: Decimal | None,
        ttl_seconds: int,
    ) -> bool:
        """Set the cursor to ``amount`` (None clears it) if it still equals ``expected``."""
        ...


class StateStore(TokenStore, BidCursor, Protocol):
    async def close(self) -> None: ...


class BidLedger(Protocol):
    async def append(
        self,
        auction_id: str,
        bidder_id: str,
        amount: Decimal,
        placed_at: datetime,
    ) -> BidRecord: ...

    async def list_bids(self, auction_id: str) -> list[BidRecord]: ...

    async def count_bids(self) -> int: ...


class WindowStore(Protocol):
    async def fetch_window(self, auction_id: str) -> Mapping[str, Any]:
        """Return the raw auction row; raises AuctionNotFound."""
        ...


class ParticipantRegistry(Protocol):
    async def is_participant(self, auction_id: str, bidder_id: str) -> bool: ...


@dataclass
class Backends:
    state: StateStore
    ledger: BidLedger
    windows: WindowStore
    participants: ParticipantRegistry
    postgres: PostgresStorage | None = None

    async def close(self) -> None:
        await self.state.close()
        if self.postgres is not None:
            await self.postgres.close()


def build_state_store(
    config: ServerConfig,
    clock: Callable[[], datetime] = utcnow,
) -> StateStore:
    backend = config.state.backend
    options = dict(config.state.options)
    if backend == "in_memory":
        return InMemoryStateStore(clock=clock, **options)
    if backend == "redis":
        return RedisStateStore(**options)
    raise ValueError(f"unknown state backend {backend}")


def build_backends(
    config: ServerConfig,
    clock: Callable[[], datetime] = utcnow,
) -> Backends:
    postgres: PostgresStorage | None = None
    memory: InMemoryStorage | None = None

    def _postgres(options: Mapping[str, Any]) -> PostgresStorage:
        nonlocal postgres
        if postgres is None:
            postgres = PostgresStorage(**options)
        return postgres

    def _memory() -> InMemoryStorage:
        nonlocal memory
        if memory is None:
            memory = InMemoryStorage(auctions=config.windows.options.get("auctions") or [])
        return memory

    ledger: BidLedger
    if config.ledger.backend == "in_memory":
        ledger = _memory()
    elif config.ledger.backend == "postgres":
        ledger = _postgres(config.ledger.options)
    else:
        raise ValueError(f"unknown ledger backend {config.ledger.backend}")

    windows: WindowStore
    if config.windows.backend == "in_memory":
        windows = _memory()
    elif config.windows.backend == "postgres":
        windows = _postgres(config.windows.options)
    else:
        raise ValueError(f"unknown windows backend {config.windows.backend}")

    participants: ParticipantRegistry
    if config.participants.backend == "yaml":
        path = config.participants.options.get("path") or get_participants_path()
        participants = YamlParticipantRegistry(path)
    elif config.participants.backend == "postgres":
        participants = _postgres(config.participants.options)
    else:
        raise ValueError(f"unknown participants backend {config.participants.backend}")

    return Backends(
        state=build_state_store(config, clock),
        ledger=ledger,
        windows=windows,
        participants=participants,
        postgres=postgres,
    )
