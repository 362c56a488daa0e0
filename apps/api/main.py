from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from adapters.brokers.spotware import SpotwareBrokerClient
from adapters.brokers.token_manager import OAuthTokenManager
from adapters.storage.memory_store import InMemoryIngestionStore
from core.domain.records import Collection, QueryFilters, QueryResult, utcnow
from core.errors import BridgeError, UpstreamError
from core.services.accounts import DEFAULT_ACCOUNT_TRADES_LIMIT, account_positions_view, account_trades_view
from core.services.ingestion import IngestionService, IngestOutcome
from core.services.query import query
from core.services.stats import build_status
from core.settings import Settings
from core.settings import get_settings as load_settings

logger = logging.getLogger(__name__)

SERVICE_VERSION = "0.3.0"

ENDPOINTS = [
    "GET /accounts - Get trading accounts list",
    "GET /accounts/:accountId/balance - Get account balance",
    "GET /accounts/:accountId/positions - Get open positions pushed by the cBot",
    "GET /accounts/:accountId/trades - Get trade history pushed by the cBot",
    "GET /profile - Get user profile",
    "GET /status - Server status",
    "POST /cbot/positions - Push an open position (or a per-symbol batch)",
    "POST /cbot/trades - Push a closed trade",
    "POST /cbot/stress - Push a stress event",
    "GET /cbot/positions - Query stored positions (symbol, label, limit)",
    "GET /cbot/trades - Query stored trades (symbol, label, limit)",
    "GET /cbot/stress - Query stored stress events (symbol, label, limit)",
    "GET /cbot/status - Ingestion statistics",
]

AVAILABLE_ENDPOINTS = [
    "/",
    "/status",
    "/profile",
    "/accounts",
    "/accounts/:accountId/balance",
    "/accounts/:accountId/positions",
    "/accounts/:accountId/trades",
    "/cbot/positions",
    "/cbot/trades",
    "/cbot/stress",
    "/cbot/status",
]


def _configure_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    _configure_logging(settings.log_level)
    clock = utcnow
    store = InMemoryIngestionStore(
        max_positions=settings.max_positions,
        max_trades=settings.max_trades,
        max_stress_events=settings.max_stress_events,
    )
    tokens = OAuthTokenManager.from_settings(settings)
    broker = SpotwareBrokerClient.from_settings(settings, tokens)

    if not settings.bridge_auth_token:
        logger.warning("BRIDGE_AUTH_TOKEN is not set; cBot push endpoints accept unauthenticated writes")

    app.state.settings = settings
    app.state.clock = clock
    app.state.store = store
    app.state.ingestion = IngestionService(store, auth_token=settings.bridge_auth_token, clock=clock)
    app.state.tokens = tokens
    app.state.broker = broker

    try:
        yield
    finally:
        await broker.close()
        await tokens.close()


app = FastAPI(title="cTrader Bridge", version=SERVICE_VERSION, lifespan=lifespan)


def _error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@app.exception_handler(BridgeError)
async def _handle_bridge_error(_request: Request, exc: BridgeError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.error("Upstream failure: %s", exc.message)
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def _handle_request_validation(_request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, f"Invalid request: {details}")


@app.exception_handler(StarletteHTTPException)
async def _handle_http_exception(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return _error_response(exc.status_code, "Endpoint not found", availableEndpoints=AVAILABLE_ENDPOINTS)
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def _handle_unexpected(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal server error")


def get_settings() -> Settings:
    return app.state.settings


def get_clock() -> Callable[[], datetime]:
    return app.state.clock


def get_store() -> InMemoryIngestionStore:
    return app.state.store


def get_ingestion() -> IngestionService:
    return app.state.ingestion


def get_tokens() -> OAuthTokenManager:
    return app.state.tokens


def get_broker() -> SpotwareBrokerClient:
    return app.state.broker


SettingsDep = Annotated[Settings, Depends(get_settings)]
ClockDep = Annotated[Callable[[], datetime], Depends(get_clock)]
StoreDep = Annotated[InMemoryIngestionStore, Depends(get_store)]
IngestionDep = Annotated[IngestionService, Depends(get_ingestion)]
TokensDep = Annotated[OAuthTokenManager, Depends(get_tokens)]
BrokerDep = Annotated[SpotwareBrokerClient, Depends(get_broker)]
BridgeTokenHeader = Annotated[str | None, Header(alias="X-Bridge-Token")]
LimitQuery = Annotated[int | None, Query(ge=1)]


async def _read_json(request: Request) -> Any:
    """Return the parsed body, or None when it is empty or not JSON."""
    body = await request.body()
    if not body:
        return None
    try:
        return await request.json()
    except ValueError:
        logger.warning("Ignoring non-JSON body on %s", request.url.path)
        return None


def _ingest_response(message: str, outcome: IngestOutcome, **extra: Any) -> dict[str, Any]:
    return {
        "success": True,
        "message": message,
        **extra,
        "timestamp": outcome.received_at.isoformat(),
    }


def _query_response(result: QueryResult) -> dict[str, Any]:
    return {
        "success": True,
        "data": [record.to_payload() for record in result.data],
        "count": result.count,
        "totalStored": result.total_stored,
        "filters": result.filters.to_payload(),
        "limit": result.limit,
    }


@app.get("/", summary="Service banner")
async def root(store: StoreDep) -> dict[str, Any]:
    return {
        "message": "cTrader Bridge Server is running",
        "version": SERVICE_VERSION,
        "cbotPositions": store.count(Collection.POSITIONS),
        "endpoints": ENDPOINTS,
    }


@app.get("/health", summary="Health check", status_code=status.HTTP_200_OK)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/status", summary="Server and token status")
async def read_status(
    tokens: TokensDep, store: StoreDep, ingestion: IngestionDep, clock: ClockDep
) -> JSONResponse:
    now = clock()
    summary = {
        "positions": store.count(Collection.POSITIONS),
        "trades": store.count(Collection.TRADES),
        "stressEvents": store.count(Collection.STRESS),
        "authRequired": ingestion.auth_required,
    }
    try:
        token = await tokens.get_valid_token()
    except UpstreamError as exc:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error", "error": exc.message, "cbot": summary, "timestamp": now.isoformat()},
        )
    return JSONResponse(
        content={
            "status": "online",
            "tokenValid": bool(token),
            "tokenExpiresAt": tokens.expires_at.isoformat(),
            "cbot": summary,
            "timestamp": now.isoformat(),
        }
    )


@app.get("/profile", summary="User profile")
async def read_profile(broker: BrokerDep) -> Any:
    return await broker.get_profile()


@app.get("/accounts", summary="Trading accounts")
async def read_accounts(broker: BrokerDep) -> Any:
    return await broker.get_trading_accounts()


@app.get("/accounts/{account_id}/balance", summary="Account balance")
async def read_account_balance(account_id: str, broker: BrokerDep) -> dict[str, Any]:
    return await broker.get_account_balance(account_id)


@app.get("/accounts/{account_id}/positions", summary="Positions pushed by the cBot for one account")
async def read_account_positions(
    account_id: str,
    store: StoreDep,
    settings: SettingsDep,
    clock: ClockDep,
    symbol: str | None = None,
    label: str | None = None,
) -> dict[str, Any]:
    return account_positions_view(
        store,
        account_id,
        symbol=symbol,
        label=label,
        now=clock(),
        freshness_window=timedelta(seconds=settings.freshness_window_seconds),
    )


@app.get("/accounts/{account_id}/trades", summary="Trades pushed by the cBot for one account")
async def read_account_trades(
    account_id: str,
    store: StoreDep,
    settings: SettingsDep,
    clock: ClockDep,
    symbol: str | None = None,
    limit: Annotated[int, Query(ge=1)] = DEFAULT_ACCOUNT_TRADES_LIMIT,
) -> dict[str, Any]:
    return account_trades_view(
        store,
        account_id,
        symbol=symbol,
        limit=limit,
        now=clock(),
        freshness_window=timedelta(seconds=settings.freshness_window_seconds),
    )


@app.post("/cbot/positions", summary="Receive positions from the cBot")
async def push_positions(
    request: Request, ingestion: IngestionDep, x_bridge_token: BridgeTokenHeader = None
) -> dict[str, Any]:
    payload = await _read_json(request)
    outcome = ingestion.ingest_positions(payload, header_token=x_bridge_token)
    return _ingest_response(
        "Positions updated successfully",
        outcome,
        count=outcome.accepted,
        totalPositions=outcome.total,
    )


@app.post("/cbot/trades", summary="Receive a completed trade from the cBot")
async def push_trade(
    request: Request, ingestion: IngestionDep, x_bridge_token: BridgeTokenHeader = None
) -> dict[str, Any]:
    payload = await _read_json(request)
    outcome = ingestion.ingest_trade(payload, header_token=x_bridge_token)
    return _ingest_response(
        "Trade recorded successfully",
        outcome,
        tradeId=outcome.record_id,
        totalTrades=outcome.total,
    )


@app.post("/cbot/stress", summary="Receive a stress event from the cBot")
async def push_stress_event(
    request: Request, ingestion: IngestionDep, x_bridge_token: BridgeTokenHeader = None
) -> dict[str, Any]:
    payload = await _read_json(request)
    outcome = ingestion.ingest_stress_event(payload, header_token=x_bridge_token)
    return _ingest_response("Stress event recorded successfully", outcome, totalStressEvents=outcome.total)


@app.get("/cbot/positions", summary="Stored cBot positions")
async def read_cbot_positions(
    store: StoreDep, symbol: str | None = None, label: str | None = None, limit: LimitQuery = None
) -> dict[str, Any]:
    return _query_response(query(store, Collection.POSITIONS, QueryFilters(symbol=symbol, label=label), limit))


@app.get("/cbot/trades", summary="Stored cBot trades")
async def read_cbot_trades(
    store: StoreDep, symbol: str | None = None, label: str | None = None, limit: LimitQuery = None
) -> dict[str, Any]:
    return _query_response(query(store, Collection.TRADES, QueryFilters(symbol=symbol, label=label), limit))


@app.get("/cbot/stress", summary="Stored cBot stress events")
async def read_cbot_stress(
    store: StoreDep, symbol: str | None = None, label: str | None = None, limit: LimitQuery = None
) -> dict[str, Any]:
    return _query_response(query(store, Collection.STRESS, QueryFilters(symbol=symbol, label=label), limit))


@app.get("/cbot/status", summary="cBot ingestion statistics")
async def read_cbot_status(store: StoreDep, settings: SettingsDep, clock: ClockDep) -> dict[str, Any]:
    now = clock()
    snapshot = build_status(store, now=now, freshness_window=timedelta(seconds=settings.freshness_window_seconds))
    return {
        "success": True,
        "message": "cBot hybrid system active",
        "stats": snapshot.to_payload(),
        "endpoints": [entry for entry in ENDPOINTS if "/cbot/" in entry],
        "timestamp": now.isoformat(),
    }


def _parse_args(argv: list[str] | None, settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bridge between the cTrader Open API and a cBot push client.")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--log-level", default=settings.log_level.lower())
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    settings = load_settings()
    args = _parse_args(argv, settings)
    _configure_logging(args.log_level.upper())

    import uvicorn

    logger.info("cTrader Bridge Server v%s starting on %s:%s", SERVICE_VERSION, args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
