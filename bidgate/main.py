from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from .admin import config as admin_config
from .admin import health as admin_health
from .admin import stats as admin_stats
from .auction.admission import BidAdmissionService
from .auction.models import Rejected, RejectionReason, to_decimal
from .auction.status import AuctionStatusService, AuctionStillOpen
from .auction.tokens import ActivationSweeper, AuctionClosed, TokenNotFound, TokenService
from .auction.windows import AuctionWindowReader, MalformedWindow
from .config import ServerConfig, get_server_config
from .storage import AuctionNotFound, StorageUnavailable, build_backends
from .transport.timestamps import TimestampError, assert_within_skew, format_timestamp, load_zone
from .validation.validator import RequestValidationError, SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    logging.basicConfig(level=server_config.log_level)
    schema_registry = get_schema_registry()
    zone = load_zone(server_config.timezone)
    backends = build_backends(server_config)
    window_reader = AuctionWindowReader(backends.windows, zone)
    token_service = TokenService(
        window_reader,
        backends.state,
        max_activation_lag_seconds=server_config.tokens.max_activation_lag_seconds,
    )
    admission_service = BidAdmissionService(
        token_service,
        backends.participants,
        backends.state,
        backends.ledger,
    )
    status_service = AuctionStatusService(window_reader, backends.state, backends.ledger)
    sweeper = ActivationSweeper(token_service, server_config.tokens.sweep_interval_seconds)

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.backends = backends
    app.state.window_reader = window_reader
    app.state.token_service = token_service
    app.state.admission_service = admission_service
    app.state.status_service = status_service
    app.state.sweeper = sweeper
    app.state.start_time = datetime.now(timezone.utc)

    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        await backends.close()


app = FastAPI(
    title="Bidgate Bid Admission Server",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_config.router)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
    logger.error("storage unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "storage temporarily unavailable"},
        headers={"Retry-After": "1"},
    )


# Dependency helpers ---------------------------------------------------------


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_window_reader(request: Request) -> AuctionWindowReader:
    return request.app.state.window_reader


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_admission_service(request: Request) -> BidAdmissionService:
    return request.app.state.admission_service


def get_status_service(request: Request) -> AuctionStatusService:
    return request.app.state.status_service


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(settings: ServerConfig = Depends(get_server_settings)) -> dict[str, Any]:
    return {
        "service": "bidgate",
        "version": app.version,
        "timezone": settings.timezone,
        "state_backend": settings.state.backend,
        "ledger_backend": settings.ledger.backend,
    }


@app.post("/tokens", tags=["tokens"], status_code=status.HTTP_201_CREATED)
async def issue_token(
    payload: dict[str, Any] = Body(...),
    schemas: SchemaRegistry = Depends(get_schema_service),
    tokens: TokenService = Depends(get_token_service),
) -> dict[str, Any]:
    try:
        schemas.validate("token_request", payload)
    except RequestValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.problems) from exc
    auction_id = str(payload["auction_id"])
    try:
        issued = await tokens.issue(auction_id)
    except AuctionNotFound as exc:
        raise HTTPException(status_code=404, detail=f"auction {auction_id} not found") from exc
    except AuctionClosed as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except MalformedWindow as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {
        "token": issued.token,
        "auction": issued.snapshot.as_dict(),
        "active": issued.active,
        "activates_at": format_timestamp(issued.activates_at),
        "message": issued.message,
    }


@app.get("/tokens", tags=["tokens"])
async def find_token(
    auction_id: str = Query(..., min_length=1),
    tokens: TokenService = Depends(get_token_service),
) -> dict[str, str]:
    try:
        token = await tokens.find_active_token(auction_id)
    except TokenNotFound as exc:
        raise HTTPException(
            status_code=404, detail=f"no active token for auction {auction_id}"
        ) from exc
    return {"token": token}


_REJECTION_STATUS = {
    RejectionReason.INVALID_OR_EXPIRED_TOKEN: status.HTTP_400_BAD_REQUEST,
    RejectionReason.NOT_A_PARTICIPANT: status.HTTP_403_FORBIDDEN,
    RejectionReason.AMOUNT_TOO_LOW: status.HTTP_400_BAD_REQUEST,
    RejectionReason.PERSISTENCE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    RejectionReason.AUCTION_BUSY: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.post("/bids", tags=["bids"], status_code=status.HTTP_201_CREATED)
async def submit_bid(
    payload: dict[str, Any] = Body(...),
    settings: ServerConfig = Depends(get_server_settings),
    schemas: SchemaRegistry = Depends(get_schema_service),
    admission: BidAdmissionService = Depends(get_admission_service),
) -> dict[str, Any]:
    received_at = datetime.now(timezone.utc)
    try:
        schemas.validate("bid_request", payload)
    except RequestValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.problems) from exc
    try:
        amount = to_decimal(payload["amount"])
        requested_at = (
            assert_within_skew(
                payload["timestamp"],
                max_skew_ms=settings.bids.max_clock_skew_ms,
                now=received_at,
            )
            if payload.get("timestamp")
            else received_at
        )
    except (TimestampError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if amount <= 0:
        raise HTTPException(status_code=422, detail="amount must be positive")

    result = await admission.submit(
        payload["token"],
        amount,
        str(payload["bidder_id"]),
        requested_at,
    )
    if isinstance(result, Rejected):
        raise HTTPException(
            status_code=_REJECTION_STATUS[result.reason],
            detail={"status": "rejected", **result.as_dict()},
            headers={"Retry-After": "1"} if result.retryable else None,
        )
    return {"status": "accepted", "bid": result.bid.as_dict()}


@app.get("/auctions/{auction_id}/window", tags=["auctions"])
async def get_window(
    auction_id: str,
    windows: AuctionWindowReader = Depends(get_window_reader),
) -> dict[str, Any]:
    try:
        window = await windows.get_window(auction_id)
    except AuctionNotFound as exc:
        raise HTTPException(status_code=404, detail=f"auction {auction_id} not found") from exc
    except MalformedWindow as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return window.as_dict()


@app.get("/auctions/{auction_id}/status", tags=["auctions"])
async def get_status(
    auction_id: str,
    service: AuctionStatusService = Depends(get_status_service),
) -> dict[str, Any]:
    try:
        return await service.status(auction_id)
    except AuctionNotFound as exc:
        raise HTTPException(status_code=404, detail=f"auction {auction_id} not found") from exc
    except MalformedWindow as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.get("/auctions/{auction_id}/winner", tags=["auctions"])
async def get_winner(
    auction_id: str,
    service: AuctionStatusService = Depends(get_status_service),
) -> dict[str, Any]:
    try:
        winner = await service.winner(auction_id)
    except AuctionNotFound as exc:
        raise HTTPException(status_code=404, detail=f"auction {auction_id} not found") from exc
    except AuctionStillOpen as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except MalformedWindow as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if winner is None:
        return {"auction_id": auction_id, "no_bid": True}
    return {"auction_id": auction_id, "no_bid": False, "winner": winner.as_dict()}
