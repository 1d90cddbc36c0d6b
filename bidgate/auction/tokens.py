"""Bidding token issuance, lookup and deferred activation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable

from ..storage import StorageUnavailable, TokenStore
from ..transport.canonical_json import canonical_dumps, canonical_loads
from ..transport.timestamps import format_timestamp, parse_timestamp, utcnow
from .models import IssuedToken, TokenSnapshot
from .windows import AuctionWindowReader

logger = logging.getLogger(__name__)

ACTIVATION_FIELD = "activacion"


class AuctionClosed(ValueError):
    """Raised when a token is requested for an auction that already ended."""


class TokenNotFound(KeyError):
    """Raised when no active token exists for an auction."""


@dataclass
class ActivationStats:
    issued_active: int = 0
    issued_scheduled: int = 0
    activated: int = 0
    late_activations: int = 0
    max_lag_seconds: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Activation:
    token: str
    snapshot: TokenSnapshot
    lag_seconds: float
    created: bool


def _seconds_until(instant: datetime, now: datetime) -> int:
    return int((instant - now).total_seconds())


class TokenService:
    """Only writer of the token registry.

    Tokens for auctions that have not started are stored as pending entries
    carrying their activation instant. A pending token becomes active on the
    first lookup at or after that instant, or when the sweeper promotes it,
    so activation survives process restarts.
    """

    def __init__(
        self,
        windows: AuctionWindowReader,
        store: TokenStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_activation_lag_seconds: float = 5.0,
    ) -> None:
        self._windows = windows
        self._store = store
        self._clock = clock
        self._max_lag = max_activation_lag_seconds
        self.stats = ActivationStats()

    async def issue(self, auction_id: str) -> IssuedToken:
        window = await self._windows.get_window(auction_id)
        now = self._clock()
        # Entries expire at the auction end, so a sub-second remainder counts as ended.
        ttl_seconds = _seconds_until(window.ends_at, now)
        if ttl_seconds <= 0:
            raise AuctionClosed(f"auction {auction_id} already ended")
        token = str(uuid.uuid4())
        snapshot = window.snapshot()

        if window.starts_at <= now:
            await self._store.put_active(
                token, auction_id, canonical_dumps(snapshot.to_payload()), ttl_seconds
            )
            self.stats.issued_active += 1
            logger.info("token %s activated immediately for auction %s", token, auction_id)
            return IssuedToken(
                token=token,
                snapshot=snapshot,
                activates_at=now,
                active=True,
                message="Token active until the auction ends.",
            )

        payload = snapshot.to_payload()
        payload[ACTIVATION_FIELD] = format_timestamp(window.starts_at)
        await self._store.put_pending(token, auction_id, canonical_dumps(payload), ttl_seconds)
        self.stats.issued_scheduled += 1
        logger.info(
            "token %s for auction %s scheduled for activation at %s",
            token,
            auction_id,
            payload[ACTIVATION_FIELD],
        )
        return IssuedToken(
            token=token,
            snapshot=snapshot,
            activates_at=window.starts_at,
            active=False,
            message=f"Token scheduled for activation at {payload[ACTIVATION_FIELD]}.",
        )

    async def resolve(self, token: str) -> TokenSnapshot | None:
        """Return the live snapshot for ``token``, activating it if it is due."""
        raw = await self._store.get_active(token)
        if raw is not None:
            return self._decode_active(token, raw)
        activation = await self._activate_if_due(token)
        return activation.snapshot if activation else None

    async def find_active_token(self, auction_id: str) -> str:
        token = await self._store.indexed_token(auction_id)
        if token is not None:
            snapshot = await self.resolve(token)
            if snapshot is not None and snapshot.auction_id == auction_id:
                return token

        pending = await self._store.indexed_pending_token(auction_id)
        if pending is not None:
            activation = await self._activate_if_due(pending)
            if activation is not None and activation.snapshot.auction_id == auction_id:
                return pending

        for candidate, raw in await self._store.scan_active():
            snapshot = self._decode_active(candidate, raw)
            if snapshot is not None and snapshot.auction_id == auction_id:
                return candidate
        raise TokenNotFound(auction_id)

    async def activate_due(self) -> list[Activation]:
        activations = []
        for token, raw in await self._store.scan_pending():
            activation = await self._activate_if_due(token, raw)
            if activation is not None and activation.created:
                activations.append(activation)
        return activations

    async def _activate_if_due(self, token: str, raw: bytes | None = None) -> Activation | None:
        if raw is None:
            raw = await self._store.get_pending(token)
            if raw is None:
                return None
        try:
            data = canonical_loads(raw)
            snapshot = TokenSnapshot.from_payload(data)
            activates_at = parse_timestamp(data[ACTIVATION_FIELD])
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("skipping unreadable pending token %s: %s", token, exc)
            return None
        now = self._clock()
        if now < activates_at:
            return None
        ttl_seconds = _seconds_until(snapshot.ends_at, now)
        if ttl_seconds <= 0:
            return None
        created = await self._store.promote(
            token, snapshot.auction_id, canonical_dumps(snapshot.to_payload()), ttl_seconds
        )
        lag = (now - activates_at).total_seconds()
        if created:
            self._record_activation(token, snapshot, lag)
        return Activation(token=token, snapshot=snapshot, lag_seconds=lag, created=created)

    def _record_activation(self, token: str, snapshot: TokenSnapshot, lag: float) -> None:
        self.stats.activated += 1
        self.stats.max_lag_seconds = max(self.stats.max_lag_seconds, lag)
        if lag > self._max_lag:
            self.stats.late_activations += 1
            logger.warning(
                "token %s for auction %s activated %.1fs after its start",
                token,
                snapshot.auction_id,
                lag,
            )
        else:
            logger.info("token %s activated for auction %s", token, snapshot.auction_id)

    def _decode_active(self, token: str, raw: bytes) -> TokenSnapshot | None:
        try:
            return TokenSnapshot.from_payload(canonical_loads(raw))
        except ValueError as exc:
            logger.warning("skipping unreadable token %s: %s", token, exc)
            return None


class ActivationSweeper:
    """Background task promoting pending tokens whose start has passed."""

    def __init__(self, tokens: TokenService, interval_seconds: float) -> None:
        self._tokens = tokens
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def sweep(self) -> list[Activation]:
        try:
            return await self._tokens.activate_due()
        except StorageUnavailable as exc:
            logger.warning("token activation sweep failed: %s", exc)
            return []

    async def _run(self) -> None:
        while True:
            await self.sweep()
            await asyncio.sleep(self._interval)
