"""
Quote sources, tried in order by UniverseQuoteService.

  mock mode   MockQuoteSource                              deterministic, no I/O
  real mode   GroupedDailyQuoteSource (bulk)  ->  PreviousCloseQuoteSource (per ticker)

Each source gets only the tickers still unresolved by the sources before it and
returns the subset it could price. Upstream failures are logged and swallowed
here: a source that cannot price a ticker simply leaves it out.

Grouped daily date walk:
  start at yesterday (UTC), step back one day at a time, skip Sat/Sun,
  at most 7 weekday dates, stop at the first date with >= 1 usable universe price.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Protocol, Sequence

import httpx

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.api_clients.polygon_client import PolygonClient
from valuescreen.config import Settings
from valuescreen.errors import UpstreamRequestError
from valuescreen.models import UniverseQuote

logger = logging.getLogger(__name__)

MOCK_SOURCE = "Mock deterministic universe quote"
GROUPED_DAILY_MAX_ATTEMPTS = 7


def ticker_seed(ticker: str) -> int:
    return sum(ord(c) for c in ticker)


def mock_price(ticker: str) -> float:
    seed = ticker_seed(ticker)
    return round(30 + seed % 900 + (seed % 37) * 0.33, 2)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def candidate_trading_dates(today: date, attempts: int = GROUPED_DAILY_MAX_ATTEMPTS) -> list[date]:
    """Up to `attempts` weekday dates, newest first, starting the day before `today`."""
    out: list[date] = []
    day = today
    while len(out) < attempts:
        day -= timedelta(days=1)
        if day.weekday() >= 5:
            continue
        out.append(day)
    return out


class QuoteSource(Protocol):
    name: str
    bulk: bool

    async def fetch(self, tickers: Sequence[str]) -> dict[str, UniverseQuote]:
        ...


class MockQuoteSource:
    name = "mock"
    bulk = False

    async def fetch(self, tickers: Sequence[str]) -> dict[str, UniverseQuote]:
        as_of = datetime.now(timezone.utc)
        return {
            t: UniverseQuote(price=mock_price(t), as_of=as_of, source=MOCK_SOURCE)
            for t in tickers
        }


class GroupedDailyQuoteSource:
    name = "grouped_daily"
    bulk = True

    def __init__(
        self,
        client: PolygonClient,
        today: Callable[[], date] = _utc_today,
        attempts: int = GROUPED_DAILY_MAX_ATTEMPTS,
    ):
        self._client = client
        self._today = today
        self._attempts = attempts

    async def fetch(self, tickers: Sequence[str]) -> dict[str, UniverseQuote]:
        wanted = set(tickers)
        for day in candidate_trading_dates(self._today(), self._attempts):
            try:
                rows = await self._client.fetch_grouped_daily(day)
            except UpstreamRequestError as exc:
                logger.warning("[Polygon][Grouped] %s failed: %s", day.isoformat(), exc.message)
                continue

            found = {t: q for t, q in rows.items() if t in wanted}
            if found:
                logger.info(
                    "[Polygon][Grouped] %s priced %d/%d tickers",
                    day.isoformat(), len(found), len(wanted),
                )
                return found
            logger.info("[Polygon][Grouped] %s had no universe prices, trying an earlier date", day.isoformat())

        logger.warning("[Polygon][Grouped] no usable date in the last %d weekdays", self._attempts)
        return {}


class PreviousCloseQuoteSource:
    name = "previous_close"
    bulk = False

    def __init__(self, client: PolygonClient):
        self._client = client

    async def fetch(self, tickers: Sequence[str]) -> dict[str, UniverseQuote]:
        out: dict[str, UniverseQuote] = {}
        for ticker in tickers:
            try:
                quote = await self._client.fetch_previous_close(ticker)
            except UpstreamRequestError as exc:
                logger.warning("[Polygon][Prev] %s failed: %s", ticker, exc.message)
                continue
            if quote is None:
                logger.warning("[Polygon][Prev] %s: no usable price", ticker)
                continue
            out[ticker] = quote
        if tickers:
            logger.info("[Polygon][Prev] priced %d/%d fallback tickers", len(out), len(tickers))
        return out


def build_quote_sources(
    settings: Settings,
    http: httpx.AsyncClient | None,
    polygon_gate: FetchGate | None,
) -> list[QuoteSource]:
    """Source chain for the configured data mode. Real mode needs POLYGON_API_KEY."""
    if not settings.is_real:
        return [MockQuoteSource()]

    api_key = settings.require_polygon_api_key()
    if http is None or polygon_gate is None:
        raise ValueError("real data mode needs an http client and a Polygon gate")
    client = PolygonClient(http, polygon_gate, api_key)
    return [GroupedDailyQuoteSource(client), PreviousCloseQuoteSource(client)]
