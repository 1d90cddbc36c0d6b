"""Admin health endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from ..storage import StorageUnavailable

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/health")
async def health(request: Request) -> dict[str, int | str | bool]:
    start_time = getattr(request.app.state, "start_time", None)
    if start_time:
        uptime = int((datetime.now(timezone.utc) - start_time).total_seconds())
    else:
        uptime = 0
    settings = request.app.state.server_config
    state_ok = True
    try:
        await request.app.state.backends.state.indexed_token("__health__")
    except StorageUnavailable as exc:
        logger.warning("state store health probe failed: %s", exc)
        state_ok = False
    return {
        "status": "healthy" if state_ok else "degraded",
        "uptime_seconds": uptime,
        "version": request.app.version,
        "state_backend": settings.state.backend,
        "state_reachable": state_ok,
        "activation_sweeper": request.app.state.sweeper.running,
    }
