"""
Price history service: (ticker, range) -> daily closes, oldest first.

  range   real mode (Polygon daily aggregates)       mock mode
  1M      closes since the same day one month ago     last 21 synthetic sessions
  6M      closes since the same day six months ago    last 126 synthetic sessions
  1Y      closes since the same day one year ago      all 252 synthetic sessions

Each (ticker, range) pair is cached in memory for 12 h. Concurrent requests for
the same pair share one fetch; force_refresh skips the TTL cache only.

Real mode shares the Polygon FetchGate with the quote service. A 429 or a
Polygon "ERROR" payload surfaces as UpstreamRequestError; an empty series too,
so an empty list is never cached.
"""

import asyncio
import calendar
import logging
import math
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, get_args

import httpx

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.api_clients.polygon_client import PolygonClient
from valuescreen.config import Settings
from valuescreen.errors import UpstreamRequestError, ValidationError
from valuescreen.models import PricePoint, PriceRange
from valuescreen.services.quote_sources import ticker_seed
from valuescreen.universe import normalize_ticker

logger = logging.getLogger(__name__)

PRICE_RANGES: tuple[str, ...] = get_args(PriceRange)
RANGE_MONTHS: dict[str, int] = {"1M": 1, "6M": 6, "1Y": 12}
RANGE_SESSIONS: dict[str, int] = {"1M": 21, "6M": 126, "1Y": 252}


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _months_back(day: date, months: int) -> date:
    """Same day-of-month `months` earlier, clamped to the end of a shorter month."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def range_start(today: date, price_range: str) -> date:
    return _months_back(today, RANGE_MONTHS[price_range])


def check_range(raw: str | None) -> str:
    price_range = (raw or "").strip().upper()
    if price_range not in PRICE_RANGES:
        raise ValidationError("Invalid range supplied. Use 1M, 6M or 1Y.")
    return price_range


# ---------------------------------------------------------------------------
# Mock history
# ---------------------------------------------------------------------------

MOCK_SESSIONS = 252

# base price, daily drift, volatility
KNOWN_MOCK_SERIES: dict[str, tuple[float, float, float]] = {
    "AAPL": (190, 0.09, 2.8),
    "MSFT": (420, 0.11, 3.1),
    "TSLA": (220, 0.07, 6.2),
    "NVDA": (840, 0.2, 9.4),
    "SPY": (510, 0.08, 2.3),
}


def _seeded_random(seed: int) -> Callable[[], float]:
    value = seed

    def next_value() -> float:
        nonlocal value
        value = (value * 9301 + 49297) % 233280
        return value / 233280

    return next_value


def mock_history(ticker: str, today: date) -> list[PricePoint]:
    """252 deterministic daily closes ending at `today`, never below 5."""
    seed = ticker_seed(ticker)
    base, trend, volatility = KNOWN_MOCK_SERIES.get(ticker) or (
        30 + seed % 900,
        0.03 + (seed % 12) * 0.01,
        1.8 + (seed % 50) * 0.08,
    )
    random = _seeded_random(seed)
    end = datetime(today.year, today.month, today.day, tzinfo=timezone.utc)

    points: list[PricePoint] = []
    for i in range(MOCK_SESSIONS):
        noise = (random() - 0.5) * volatility
        wave = math.sin(i / 8) * volatility
        price = max(5.0, round(base + i * trend + noise + wave, 2))
        points.append(PricePoint(day=end - timedelta(days=MOCK_SESSIONS - 1 - i), price=price))
    return points


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class PriceHistoryService:
    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
        polygon_gate: FetchGate | None = None,
        client: PolygonClient | None = None,
        today: Callable[[], date] = _utc_today,
    ):
        self._settings = settings
        self._http = http
        self._polygon_gate = polygon_gate
        self._polygon = client
        self._today = today

        self._cache: dict[tuple[str, str], tuple[float, list[PricePoint]]] = {}
        self._inflight: dict[tuple[str, str], asyncio.Task] = {}
        self._fetch_history = self._fetch_real if settings.is_real else self._fetch_mock

    def _client(self) -> PolygonClient:
        if self._polygon is None:
            api_key = self._settings.require_polygon_api_key()
            if self._http is None or self._polygon_gate is None:
                raise ValueError("real data mode needs an http client and a Polygon gate")
            self._polygon = PolygonClient(self._http, self._polygon_gate, api_key)
        return self._polygon

    async def get_history(
        self,
        raw_ticker: str,
        price_range: str = "1M",
        force_refresh: bool = False,
    ) -> list[PricePoint]:
        """
        Daily closes for one ticker over `price_range`, oldest first.

        ValidationError for a malformed ticker or range (before any upstream
        call); UpstreamRequestError when Polygon fails or returns no bars;
        ConfigurationError when POLYGON_API_KEY is missing in real mode.
        """
        key = (normalize_ticker(raw_ticker), check_range(price_range))

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None and cached[0] > time.monotonic():
                return list(cached[1])

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load(key))
            self._inflight[key] = task
        return list(await asyncio.shield(task))

    async def _load(self, key: tuple[str, str]) -> list[PricePoint]:
        ticker, price_range = key
        try:
            points = await self._fetch_history(ticker, price_range)
            if not points:
                raise UpstreamRequestError(f"No historical data returned for {ticker}.")
            self._cache[key] = (time.monotonic() + self._settings.history_ttl_s, points)
            return points
        finally:
            self._inflight.pop(key, None)

    async def _fetch_mock(self, ticker: str, price_range: str) -> list[PricePoint]:
        return mock_history(ticker, self._today())[-RANGE_SESSIONS[price_range]:]

    async def _fetch_real(self, ticker: str, price_range: str) -> list[PricePoint]:
        client = self._client()
        today = self._today()
        points = await client.fetch_daily_closes(ticker, range_start(today, price_range), today)
        logger.info("[Polygon][History] %s %s: %d closes", ticker, price_range, len(points))
        return points
