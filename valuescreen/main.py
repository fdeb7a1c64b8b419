import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

# .env at the repo root is read before Settings looks at os.environ
load_dotenv(Path(__file__).resolve().parent.parent / ".env", override=False)

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.config import Settings
from valuescreen.errors import UpstreamRequestError, ValueScreenError
from valuescreen.orchestrator.enrichment_orchestrator import EnrichmentOrchestrator
from valuescreen.services.fundamentals_service import FundamentalsService
from valuescreen.services.price_history import PriceHistoryService
from valuescreen.services.universe_quotes import UniverseQuoteService
from valuescreen.universe import (
    UNIVERSE_AS_OF,
    UNIVERSE_SOURCE,
    UNIVERSE_TICKERS,
    is_universe_ticker,
    normalize_ticker,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class ScoreBreakdownOut(BaseModel):
    pe_score: int
    ps_score: int
    revenue_growth_score: int
    operating_margin_score: int


class EnrichedTickerOut(BaseModel):
    ticker: str
    company_name: str | None
    latest_price: float | None
    market_cap: float | None
    pe_ttm: float | None
    ps: float | None
    eps_ttm: float | None
    revenue_ttm: float | None
    revenue_growth_yoy: float | None
    operating_margin: float | None
    value_score: int
    score_breakdown: ScoreBreakdownOut
    fundamentals_as_of: datetime | None


class CacheSnapshotOut(BaseModel):
    status: str          # "cold" | "loading" | "ready" | "error"
    tickers: list[EnrichedTickerOut]
    last_updated: datetime | None
    error: str | None


class PreloadStartedOut(BaseModel):
    started: bool
    force_refresh: bool


class TickerOut(BaseModel):
    status: str
    ticker: EnrichedTickerOut


class UniverseQuoteOut(BaseModel):
    price: float
    as_of: datetime
    source: str


class UniverseQuotesOut(BaseModel):
    tickers: list[str]
    as_of: str
    source: str
    quotes: dict[str, UniverseQuoteOut]


class MarketQuoteOut(BaseModel):
    ticker: str
    price: float
    as_of: datetime
    source: str


class PricePointOut(BaseModel):
    date: datetime
    price: float


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings or Settings.from_env()
    logger.info("[App] starting in %s data mode", settings.data_mode)

    async with httpx.AsyncClient() as http:
        polygon_gate = FetchGate(settings.polygon_min_interval_s, name="polygon")
        sec_gate = FetchGate(settings.sec_min_interval_s, name="sec")

        quotes = UniverseQuoteService(settings, http, polygon_gate)
        fundamentals = FundamentalsService(settings, http, sec_gate)
        history = PriceHistoryService(settings, http, polygon_gate)
        orchestrator = EnrichmentOrchestrator(settings, quotes, fundamentals)

        app.state.quotes = quotes
        app.state.history = history
        app.state.orchestrator = orchestrator

        orchestrator.trigger_preload(force_refresh=False)
        try:
            yield
        finally:
            await orchestrator.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    app = FastAPI(title="ValueScreen", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


def get_orchestrator(request: Request) -> EnrichmentOrchestrator:
    return request.app.state.orchestrator


def get_quote_service(request: Request) -> UniverseQuoteService:
    return request.app.state.quotes


def get_history_service(request: Request) -> PriceHistoryService:
    return request.app.state.history


def _http_error(exc: ValueScreenError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/health")
def healthcheck():
    return {"status": "ok"}


@router.get("/preload", response_model=CacheSnapshotOut)
async def preload_status(orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_cache_snapshot().to_dict()


@router.post("/preload", response_model=PreloadStartedOut)
async def preload_start(
    refresh: bool = False,
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    """Fire-and-forget. Poll GET /preload or GET /rankings for progress."""
    orchestrator.trigger_preload(force_refresh=refresh)
    return PreloadStartedOut(started=True, force_refresh=refresh)


@router.get("/rankings", response_model=CacheSnapshotOut)
async def rankings(orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator)):
    snapshot = orchestrator.get_cache_snapshot()
    if snapshot.status == "cold":
        orchestrator.trigger_preload(force_refresh=False)
    return snapshot.to_dict()


@router.get("/ticker", response_model=TickerOut)
async def ticker_detail(
    ticker: str = "",
    refresh: bool = False,
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    """
    Cached record for universe tickers; on-demand enrichment otherwise.

      cold                 -> start a preload, then serve on-demand
      loading, no refresh  -> 202 {"status": "loading"}
      ready / error        -> cached record if present
      refresh=1 or absent  -> on-demand (not written to the cache)
    """
    try:
        symbol = normalize_ticker(ticker)
    except ValueScreenError as exc:
        raise _http_error(exc) from exc

    snapshot = orchestrator.get_cache_snapshot()
    if snapshot.status == "cold":
        orchestrator.trigger_preload(force_refresh=False)

    if snapshot.status == "loading" and not refresh:
        return JSONResponse(status_code=202, content={"status": "loading", "ticker": symbol})

    if not refresh and is_universe_ticker(symbol) and snapshot.status in ("ready", "error"):
        for cached in snapshot.tickers:
            if cached.ticker == symbol:
                return {"status": "ready", "ticker": cached.to_dict()}

    try:
        enriched = await orchestrator.enrich_ticker(symbol, force_refresh=refresh)
    except ValueScreenError as exc:
        logger.warning("[Ticker] %s on-demand failed: %s", symbol, exc.message)
        raise _http_error(exc) from exc
    return {"status": "ready", "ticker": enriched.to_dict()}


@router.get("/universe-quotes", response_model=UniverseQuotesOut)
async def universe_quotes(
    refresh: bool = False,
    quotes: UniverseQuoteService = Depends(get_quote_service),
):
    try:
        quote_map = await quotes.get_universe_quotes(force_refresh=refresh)
    except ValueScreenError as exc:
        raise _http_error(exc) from exc
    return {
        "tickers": list(UNIVERSE_TICKERS),
        "as_of": UNIVERSE_AS_OF,
        "source": UNIVERSE_SOURCE,
        "quotes": {t: q.to_dict() for t, q in quote_map.items()},
    }


@router.get("/market/quote", response_model=MarketQuoteOut)
async def market_quote(
    ticker: str = "",
    refresh: bool = False,
    quotes: UniverseQuoteService = Depends(get_quote_service),
):
    try:
        symbol = normalize_ticker(ticker)
        quote = await quotes.get_quote(symbol, force_refresh=refresh)
        if quote is None:
            raise UpstreamRequestError(f"No quote data returned for {symbol}.")
    except ValueScreenError as exc:
        raise _http_error(exc) from exc
    return {"ticker": symbol, **quote.to_dict()}


@router.get("/market/history", response_model=list[PricePointOut])
async def market_history(
    ticker: str = "",
    price_range: str = Query("1M", alias="range"),
    refresh: bool = False,
    history: PriceHistoryService = Depends(get_history_service),
):
    """Daily closes, oldest first. range is 1M, 6M or 1Y."""
    try:
        points = await history.get_history(ticker, price_range, force_refresh=refresh)
    except ValueScreenError as exc:
        logger.warning("[History] %s %s failed: %s", ticker, price_range, exc.message)
        raise _http_error(exc) from exc
    return [p.to_dict() for p in points]


app = create_app()
