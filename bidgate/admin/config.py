"""Expose currently loaded server config for debugging."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..config import ServerConfig
from ..validation.validator import SchemaRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


def _get_schema_registry(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


@router.get("/config")
async def config(
    request: Request,
    config: ServerConfig = Depends(_get_config),
    schemas: SchemaRegistry = Depends(_get_schema_registry),
) -> dict:
    # Backend options may carry credentials, so only backend names are shown.
    return {
        "version": request.app.version,
        "timezone": config.timezone,
        "state_backend": config.state.backend,
        "ledger_backend": config.ledger.backend,
        "windows_backend": config.windows.backend,
        "participants_backend": config.participants.backend,
        "token_sweep_interval_seconds": config.tokens.sweep_interval_seconds,
        "max_activation_lag_seconds": config.tokens.max_activation_lag_seconds,
        "max_clock_skew_ms": config.bids.max_clock_skew_ms,
        "request_schemas": schemas.names(),
    }
