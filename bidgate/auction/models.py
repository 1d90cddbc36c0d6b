"""Shared auction data structures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from ..transport.timestamps import TimestampError, format_timestamp, parse_timestamp


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid amount {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"invalid amount {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"invalid amount {value!r}")
    return amount


@dataclass(frozen=True)
class AuctionWindow:
    auction_id: str
    base_price: Decimal
    min_increment: Decimal
    starts_at: datetime
    ends_at: datetime
    status: str | None = None

    def snapshot(self) -> TokenSnapshot:
        return TokenSnapshot(
            auction_id=self.auction_id,
            base_price=self.base_price,
            min_increment=self.min_increment,
            starts_at=self.starts_at,
            ends_at=self.ends_at,
            status=self.status,
        )

    def as_dict(self) -> dict[str, Any]:
        return self.snapshot().as_dict()


@dataclass(frozen=True)
class TokenSnapshot:
    """Economic parameters frozen into a token when it is issued."""

    auction_id: str
    base_price: Decimal
    min_increment: Decimal
    starts_at: datetime
    ends_at: datetime
    status: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id_subasta": self.auction_id,
            "precio_base": self.base_price,
            "monto_minimo_puja": self.min_increment,
            "inicio": format_timestamp(self.starts_at),
            "fin": format_timestamp(self.ends_at),
            "estado": self.status,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> TokenSnapshot:
        if not isinstance(payload, dict):
            raise ValueError("token payload must be an object")
        try:
            auction_id = payload["id_subasta"]
            snapshot = cls(
                auction_id=str(auction_id),
                base_price=to_decimal(payload["precio_base"]),
                min_increment=to_decimal(payload["monto_minimo_puja"]),
                starts_at=parse_timestamp(payload["inicio"]),
                ends_at=parse_timestamp(payload["fin"]),
                status=payload.get("estado"),
            )
        except (KeyError, TypeError, AttributeError, TimestampError) as exc:
            raise ValueError(f"malformed token payload: {exc}") from exc
        return snapshot

    def as_dict(self) -> dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "base_price": str(self.base_price),
            "min_increment": str(self.min_increment),
            "starts_at": format_timestamp(self.starts_at),
            "ends_at": format_timestamp(self.ends_at),
            "status": self.status,
        }


@dataclass(frozen=True)
class IssuedToken:
    token: str
    snapshot: TokenSnapshot
    activates_at: datetime
    active: bool
    message: str


@dataclass(frozen=True)
class BidRecord:
    bid_id: str
    auction_id: str
    bidder_id: str
    amount: Decimal
    placed_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "bid_id": self.bid_id,
            "auction_id": self.auction_id,
            "bidder_id": self.bidder_id,
            "amount": str(self.amount),
            "timestamp": format_timestamp(self.placed_at),
        }


class RejectionReason(str, Enum):
    INVALID_OR_EXPIRED_TOKEN = "invalid_or_expired_token"
    NOT_A_PARTICIPANT = "not_a_participant"
    AMOUNT_TOO_LOW = "amount_too_low"
    PERSISTENCE_ERROR = "persistence_error"
    AUCTION_BUSY = "auction_busy"


_RETRYABLE = {RejectionReason.PERSISTENCE_ERROR, RejectionReason.AUCTION_BUSY}


@dataclass(frozen=True)
class Accepted:
    bid: BidRecord

    @property
    def bid_id(self) -> str:
        return self.bid.bid_id

    @property
    def amount(self) -> Decimal:
        return self.bid.amount


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    message: str
    minimum: Decimal | None = None

    @property
    def retryable(self) -> bool:
        return self.reason in _RETRYABLE

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reason": self.reason.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.minimum is not None:
            payload["minimum"] = str(self.minimum)
        return payload


AdmissionResult = Union[Accepted, Rejected]
