"""Redis backend for the token registry and last-bid cursor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, Iterator

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .errors import CursorBusy, StateStoreError

logger = logging.getLogger(__name__)

# KEYS[1] cursor key; ARGV: expected value ("" when absent), new value ("" clears), ttl.
_COMPARE_AND_SET = """
local current = redis.call('GET', KEYS[1])
if not current then
    current = ''
end
if current ~= ARGV[1] then
    return 0
end
if ARGV[2] == '' then
    redis.call('DEL', KEYS[1])
else
    redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
end
return 1
"""


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StateStoreError(f"redis {action} failed: {exc}") from exc


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, (bytes, bytearray)) else value


class _Lease:
    def __init__(self, lock) -> None:
        self._lock = lock

    async def owned(self) -> bool:
        with _store_errors("lock owned"):
            return bool(await self._lock.owned())


class RedisStateStore:
    def __init__(
        self,
        *,
        url: str | None = None,
        client: aioredis.Redis | None = None,
        token_prefix: str = "subasta_token_activo",
        pending_prefix: str = "subasta_token_pendiente",
        index_prefix: str = "subasta_token_indice",
        pending_index_prefix: str = "subasta_token_pendiente_indice",
        cursor_prefix: str = "subasta_ultima_puja",
        lock_prefix: str = "subasta_puja_lock",
        lock_timeout_seconds: float = 5.0,
        lock_wait_seconds: float = 2.0,
    ) -> None:
        if client is None:
            if not url:
                raise ValueError("redis url missing")
            client = aioredis.from_url(url)
        self._redis = client
        self._token_prefix = token_prefix.rstrip(":")
        self._pending_prefix = pending_prefix.rstrip(":")
        self._index_prefix = index_prefix.rstrip(":")
        self._pending_index_prefix = pending_index_prefix.rstrip(":")
        self._cursor_prefix = cursor_prefix.rstrip(":")
        self._lock_prefix = lock_prefix.rstrip(":")
        self._lock_timeout = lock_timeout_seconds
        self._lock_wait = lock_wait_seconds
        self._compare_and_set = self._redis.register_script(_COMPARE_AND_SET)

    @staticmethod
    def _key(prefix: str, suffix: str) -> str:
        return f"{prefix}:{suffix}"

    # Token registry

    async def put_active(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> None:
        with _store_errors("put_active"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key(self._token_prefix, token), payload, ex=ttl_seconds)
                pipe.set(self._key(self._index_prefix, auction_id), token, ex=ttl_seconds)
                await pipe.execute()

    async def get_active(self, token: str) -> bytes | None:
        with _store_errors("get_active"):
            return await self._redis.get(self._key(self._token_prefix, token))

    async def put_pending(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> None:
        with _store_errors("put_pending"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key(self._pending_prefix, token), payload, ex=ttl_seconds)
                pipe.set(self._key(self._pending_index_prefix, auction_id), token, ex=ttl_seconds)
                await pipe.execute()

    async def get_pending(self, token: str) -> bytes | None:
        with _store_errors("get_pending"):
            return await self._redis.get(self._key(self._pending_prefix, token))

    async def promote(self, token: str, auction_id: str, payload: bytes, ttl_seconds: int) -> bool:
        with _store_errors("promote"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key(self._token_prefix, token), payload, ex=ttl_seconds, nx=True)
                pipe.delete(self._key(self._pending_prefix, token))
                pipe.set(self._key(self._index_prefix, auction_id), token, ex=ttl_seconds)
                created, _, _ = await pipe.execute()
        return bool(created)

    async def indexed_token(self, auction_id: str) -> str | None:
        with _store_errors("indexed_token"):
            value = await self._redis.get(self._key(self._index_prefix, auction_id))
        return _text(value) if value is not None else None

    async def indexed_pending_token(self, auction_id: str) -> str | None:
        with _store_errors("indexed_pending_token"):
            value = await self._redis.get(self._key(self._pending_index_prefix, auction_id))
        return _text(value) if value is not None else None

    async def _scan(self, prefix: str) -> list[tuple[str, bytes]]:
        pattern = self._key(prefix, "*")
        keys: list[bytes] = []
        cursor = 0
        with _store_errors("scan"):
            while True:
                cursor, batch = await self._redis.scan(cursor=cursor, match=pattern, count=100)
                keys.extend(batch)
                if cursor == 0:
                    break
            if not keys:
                return []
            values = await self._redis.mget(keys)
        offset = len(prefix) + 1
        return [
            (_text(key)[offset:], value)
            for key, value in zip(keys, values)
            if value is not None
        ]

    async def scan_active(self) -> list[tuple[str, bytes]]:
        return await self._scan(self._token_prefix)

    async def scan_pending(self) -> list[tuple[str, bytes]]:
        return await self._scan(self._pending_prefix)

    # Last-bid cursor

    @asynccontextmanager
    async def hold(self, auction_id: str) -> AsyncIterator[_Lease]:
        lock = self._redis.lock(
            self._key(self._lock_prefix, auction_id),
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_wait,
        )
        with _store_errors("lock"):
            acquired = await lock.acquire()
        if not acquired:
            raise CursorBusy(f"auction {auction_id} is busy")
        try:
            yield _Lease(lock)
        finally:
            try:
                await lock.release()
            except RedisError as exc:
                logger.warning("admission lock for auction %s not released cleanly: %s", auction_id, exc)

    async def get_cursor(self, auction_id: str) -> Decimal | None:
        with _store_errors("get_cursor"):
            raw = await self._redis.get(self._key(self._cursor_prefix, auction_id))
        if raw is None:
            return None
        try:
            return Decimal(_text(raw))
        except InvalidOperation as exc:
            raise StateStoreError(f"cursor for auction {auction_id} is not numeric") from exc

    async def compare_and_set(
        self,
        auction_id: str,
        expected: Decimal | None,
        amount: Decimal | None,
        ttl_seconds: int,
    ) -> bool:
        with _store_errors("compare_and_set"):
            applied = await self._compare_and_set(
                keys=[self._key(self._cursor_prefix, auction_id)],
                args=[
                    "" if expected is None else str(expected),
                    "" if amount is None else str(amount),
                    max(int(ttl_seconds), 1),
                ],
            )
        return bool(applied)

    async def close(self) -> None:
        await self._redis.aclose()
