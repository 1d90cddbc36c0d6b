"""Configuration helpers for the bid admission server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"
_DEFAULT_PARTICIPANTS = Path(__file__).resolve().parent / "participants.yaml"


@dataclass(frozen=True)
class BackendConfig:
    backend: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class TokenConfig:
    sweep_interval_seconds: float
    max_activation_lag_seconds: float


@dataclass(frozen=True)
class BidConfig:
    max_clock_skew_ms: int


@dataclass(frozen=True)
class ServerConfig:
    listen: Mapping[str, Any]
    state: BackendConfig
    ledger: BackendConfig
    windows: BackendConfig
    participants: BackendConfig
    tokens: TokenConfig
    bids: BidConfig
    timezone: str
    log_level: str


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def _backend(section: Mapping[str, Any], default: str) -> BackendConfig:
    return BackendConfig(
        backend=str(section.get("backend", default)),
        options=dict(section.get("options") or {}),
    )


def parse_server_config(data: Mapping[str, Any]) -> ServerConfig:
    tokens = data.get("tokens", {})
    bids = data.get("bids", {})
    return ServerConfig(
        listen=data.get("listen", {}),
        state=_backend(data.get("state", {}), "in_memory"),
        ledger=_backend(data.get("ledger", {}), "in_memory"),
        windows=_backend(data.get("windows", {}), "in_memory"),
        participants=_backend(data.get("participants", {}), "yaml"),
        tokens=TokenConfig(
            sweep_interval_seconds=float(tokens.get("sweep_interval_seconds", 1.0)),
            max_activation_lag_seconds=float(tokens.get("max_activation_lag_seconds", 5.0)),
        ),
        bids=BidConfig(max_clock_skew_ms=int(bids.get("max_clock_skew_ms", 5000))),
        timezone=str(data.get("timezone", "America/Mexico_City")),
        log_level=str(data.get("logging", {}).get("level", "INFO")).upper(),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    path = Path(os.getenv("BIDGATE_CONFIG_PATH", _DEFAULT_SERVER_CONFIG))
    return parse_server_config(_load_yaml(path))


def get_participants_path() -> Path:
    return Path(os.getenv("BIDGATE_PARTICIPANTS_PATH", _DEFAULT_PARTICIPANTS))
