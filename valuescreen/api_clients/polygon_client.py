"""
Polygon.io market data client.

Endpoints:
  GET /v2/aggs/grouped/locale/us/market/stocks/{date}?adjusted=true   one call, every US ticker
  GET /v2/aggs/ticker/{ticker}/prev                                   previous close, one ticker
  GET /v2/aggs/ticker/{ticker}/range/1/day/{from}/{to}?adjusted=true   daily closes, one ticker

Every request goes through the shared Polygon FetchGate. Failures (non-2xx,
status="ERROR", 429, malformed JSON, network errors) raise UpstreamRequestError;
the quote sources decide whether to fall through to the next tier, the
history service surfaces them to the caller.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.config import HTTP_TIMEOUT_S
from valuescreen.errors import UpstreamRequestError
from valuescreen.models import PricePoint, UniverseQuote

logger = logging.getLogger(__name__)

_BASE_URL: str = "https://api.polygon.io"

GROUPED_DAILY_SOURCE = "Polygon grouped daily"
PREVIOUS_CLOSE_SOURCE = "Polygon previous close"


def _price(v: Any) -> float | None:
    """Finite, strictly positive price or None."""
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)) and math.isfinite(v) and v > 0:
        return float(v)
    return None


def _as_of(ts_ms: Any, fallback: date) -> datetime:
    if isinstance(ts_ms, (int, float)) and math.isfinite(ts_ms):
        return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return datetime(fallback.year, fallback.month, fallback.day, tzinfo=timezone.utc)


class PolygonClient:
    def __init__(self, http: httpx.AsyncClient, gate: FetchGate, api_key: str):
        self._http = http
        self._gate = gate
        self._api_key = api_key

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        await self._gate.acquire()
        try:
            resp = await self._http.get(
                f"{_BASE_URL}{path}",
                params={**(params or {}), "apiKey": self._api_key},
                timeout=HTTP_TIMEOUT_S,
            )
        except httpx.HTTPError as exc:
            raise UpstreamRequestError(f"Polygon request failed: {exc}") from exc

        if resp.status_code == 429:
            raise UpstreamRequestError("Polygon rate limit reached (429).")
        if not resp.is_success:
            raise UpstreamRequestError(f"Polygon request failed ({resp.status_code}).")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise UpstreamRequestError("Polygon returned a malformed JSON payload.") from exc
        if not isinstance(payload, dict):
            raise UpstreamRequestError("Polygon returned an unexpected payload shape.")
        if payload.get("status") == "ERROR":
            raise UpstreamRequestError(payload.get("error") or "Polygon returned an error.")
        return payload

    async def fetch_grouped_daily(self, day: date) -> dict[str, UniverseQuote]:
        """Close price for every ticker Polygon reports on `day`. Empty dict on a non-trading day."""
        payload = await self._get_json(
            f"/v2/aggs/grouped/locale/us/market/stocks/{day.isoformat()}",
            {"adjusted": "true"},
        )
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise UpstreamRequestError("Polygon grouped daily 'results' is not a list.")

        quotes: dict[str, UniverseQuote] = {}
        for row in results:
            if not isinstance(row, dict):
                continue
            ticker = str(row.get("T") or "").strip().upper()
            price = _price(row.get("c"))
            if not ticker or price is None:
                continue
            quotes[ticker] = UniverseQuote(
                price=price,
                as_of=_as_of(row.get("t"), day),
                source=GROUPED_DAILY_SOURCE,
            )
        logger.debug("[Polygon][Grouped] %s -> %d usable rows", day.isoformat(), len(quotes))
        return quotes

    async def fetch_previous_close(self, ticker: str) -> UniverseQuote | None:
        """Previous session close for one ticker, or None if Polygon has no usable price."""
        payload = await self._get_json(f"/v2/aggs/ticker/{quote(ticker, safe='')}/prev")
        results = payload.get("results") or []
        first = results[0] if isinstance(results, list) and results else None
        if not isinstance(first, dict):
            return None
        price = _price(first.get("c"))
        if price is None:
            return None
        return UniverseQuote(
            price=price,
            as_of=_as_of(first.get("t"), date.today()),
            source=PREVIOUS_CLOSE_SOURCE,
        )

    async def fetch_daily_closes(self, ticker: str, start: date, end: date) -> list[PricePoint]:
        """Daily closes from `start` to `end` inclusive, oldest first. Unusable bars are dropped."""
        payload = await self._get_json(
            f"/v2/aggs/ticker/{quote(ticker, safe='')}/range/1/day/{start.isoformat()}/{end.isoformat()}",
            {"adjusted": "true", "sort": "asc"},
        )
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise UpstreamRequestError("Polygon aggregates 'results' is not a list.")

        points: list[PricePoint] = []
        for bar in results:
            if not isinstance(bar, dict):
                continue
            price = _price(bar.get("c"))
            ts_ms = bar.get("t")
            if price is None or not isinstance(ts_ms, (int, float)) or not math.isfinite(ts_ms):
                continue
            day = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).date()
            points.append(PricePoint(day=datetime(day.year, day.month, day.day, tzinfo=timezone.utc), price=price))
        points.sort(key=lambda p: p.day)
        logger.debug("[Polygon][History] %s %s..%s -> %d bars", ticker, start.isoformat(), end.isoformat(), len(points))
        return points
