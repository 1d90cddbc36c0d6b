"""Operational stats endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ..auction.tokens import TokenService
from ..storage import Backends

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_backends(request: Request) -> Backends:
    return request.app.state.backends


def _get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


@router.get("/stats")
async def stats(
    backends: Backends = Depends(_get_backends),
    tokens: TokenService = Depends(_get_token_service),
) -> dict[str, Any]:
    active = await backends.state.scan_active()
    pending = await backends.state.scan_pending()
    return {
        "active_tokens": len(active),
        "pending_tokens": len(pending),
        "total_bids": await backends.ledger.count_bids(),
        # Counters are per process; late_activations > 0 means tokens became
        # discoverable later than max_activation_lag_seconds after their start.
        "activations": tokens.stats.as_dict(),
    }
