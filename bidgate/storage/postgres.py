"""Postgres backend for the bid ledger, auction windows and participants."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

import asyncpg

from ..auction.models import BidRecord
from .errors import AuctionNotFound, LedgerWriteError, StorageUnavailable


class PostgresStorage:
    """One connection pool shared by every table the service touches.

    ``subasta`` and ``registro_subasta`` belong to the surrounding
    application and are only read; ``puja`` is created on first use.
    """

    def __init__(self, *, dsn: str | None = None, **connect_kwargs: Any) -> None:
        if not dsn and not connect_kwargs:
            raise ValueError("postgres connection details missing")
        self._dsn = dsn
        self._connect_kwargs = connect_kwargs
        self._pool: asyncpg.Pool | None = None

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self._dsn, **self._connect_kwargs)
            async with self._pool.acquire() as conn:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS puja (
                        id_puja BIGSERIAL PRIMARY KEY,
                        id_subasta TEXT NOT NULL,
                        id_postor TEXT NOT NULL,
                        monto NUMERIC NOT NULL,
                        fecha TIMESTAMPTZ NOT NULL
                    );
                    CREATE INDEX IF NOT EXISTS idx_puja_subasta_monto
                    ON puja (id_subasta, monto DESC);
                    """
                )
        return self._pool

    def _record(self, row: Any) -> BidRecord:
        return BidRecord(
            bid_id=str(row["id_puja"]),
            auction_id=str(row["id_subasta"]),
            bidder_id=str(row["id_postor"]),
            amount=Decimal(row["monto"]),
            placed_at=row["fecha"],
        )

    async def append(
        self,
        auction_id: str,
        bidder_id: str,
        amount: Decimal,
        placed_at: datetime,
    ) -> BidRecord:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """INSERT INTO puja(id_subasta, id_postor, monto, fecha)
                       VALUES($1, $2, $3, $4)
                       RETURNING id_puja, id_subasta, id_postor, monto, fecha""",
                    auction_id,
                    bidder_id,
                    amount,
                    placed_at,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise LedgerWriteError(f"could not append bid for auction {auction_id}: {exc}") from exc
        if not row:
            raise LedgerWriteError(f"ledger returned no row for auction {auction_id}")
        return self._record(row)

    async def list_bids(self, auction_id: str) -> list[BidRecord]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    """SELECT id_puja, id_subasta, id_postor, monto, fecha
                       FROM puja WHERE id_subasta=$1 ORDER BY id_puja""",
                    auction_id,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"could not list bids for auction {auction_id}: {exc}") from exc
        return [self._record(row) for row in rows]

    async def count_bids(self) -> int:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                return int(await conn.fetchval("SELECT count(*) FROM puja"))
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"could not count bids: {exc}") from exc

    async def fetch_window(self, auction_id: str) -> dict[str, Any]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """SELECT id_subasta, precio_base, monto_minimo_puja, inicio, fin, estado
                       FROM subasta WHERE id_subasta::text=$1""",
                    auction_id,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"could not read auction {auction_id}: {exc}") from exc
        if not row:
            raise AuctionNotFound(auction_id)
        return dict(row)

    async def is_participant(self, auction_id: str, bidder_id: str) -> bool:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                found = await conn.fetchval(
                    """SELECT 1 FROM registro_subasta
                       WHERE id_subasta::text=$1 AND id_postor::text=$2
                       LIMIT 1""",
                    auction_id,
                    bidder_id,
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise StorageUnavailable(f"could not check participant {bidder_id}: {exc}") from exc
        return found is not None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
