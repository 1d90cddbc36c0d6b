"""Read path for auction windows stored in local wall-clock time."""

from __future__ import annotations

from typing import Any, Mapping
from zoneinfo import ZoneInfo

from ..storage import WindowStore
from ..transport.timestamps import TimestampError, local_to_utc
from .models import AuctionWindow, to_decimal


class MalformedWindow(ValueError):
    """Raised when a stored auction row cannot be turned into a window."""


class AuctionWindowReader:
    def __init__(self, store: WindowStore, zone: ZoneInfo) -> None:
        self._store = store
        self._zone = zone

    async def get_window(self, auction_id: str) -> AuctionWindow:
        row = await self._store.fetch_window(auction_id)
        return self._to_window(auction_id, row)

    def _to_window(self, auction_id: str, row: Mapping[str, Any]) -> AuctionWindow:
        try:
            base_price = to_decimal(row["precio_base"])
            min_increment = to_decimal(row["monto_minimo_puja"])
            starts_at = local_to_utc(row["inicio"], self._zone)
            ends_at = local_to_utc(row["fin"], self._zone)
        except (KeyError, ValueError, TimestampError) as exc:
            raise MalformedWindow(f"auction {auction_id} has malformed window data: {exc}") from exc
        if base_price < 0 or min_increment < 0:
            raise MalformedWindow(f"auction {auction_id} has negative pricing")
        if ends_at <= starts_at:
            raise MalformedWindow(f"auction {auction_id} ends before it starts")
        status = row.get("estado")
        return AuctionWindow(
            auction_id=auction_id,
            base_price=base_price,
            min_increment=min_increment,
            starts_at=starts_at,
            ends_at=ends_at,
            status=str(status) if status is not None else None,
        )
