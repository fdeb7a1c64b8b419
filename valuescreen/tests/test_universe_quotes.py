"""
Acceptance tests: universe quote service

Rules:
  - Grouped daily walks back at most 7 weekday dates, newest first, stopping at
    the first date with a usable universe price.
  - Tickers still unpriced go to previous close, one request each; failures there
    leave the ticker out of the map instead of raising.
  - Concurrent reads share one refresh; fresh reads come from memory, then disk.
  - A cancelled reader leaves the shared refresh running for the others.
  - Mock and real mode keep separate disk entries.
  - Real mode without POLYGON_API_KEY raises ConfigurationError.
"""

import asyncio
from datetime import date

import httpx
import pytest

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.api_clients.polygon_client import GROUPED_DAILY_SOURCE, PREVIOUS_CLOSE_SOURCE, PolygonClient
from valuescreen.config import Settings
from valuescreen.errors import ConfigurationError
from valuescreen.services.quote_sources import (
    MOCK_SOURCE,
    GroupedDailyQuoteSource,
    PreviousCloseQuoteSource,
    candidate_trading_dates,
    mock_price,
)
from valuescreen.services.universe_quotes import UniverseQuoteService

TICKERS = ("AAPL", "MSFT", "BRK.B")
MONDAY = date(2024, 7, 1)
TS_MS = 1719604800000  # 2024-06-28T20:00:00Z


# ---------------------------------------------------------------------------
# Stub upstream
# ---------------------------------------------------------------------------

class StubPolygon:
    """Records every request; grouped/prev behaviour is set per test."""

    def __init__(self, grouped=None, prev=None):
        self.grouped = grouped or {}          # date str -> response | rows
        self.prev = prev or {}                # ticker -> response | price
        self.grouped_dates: list[str] = []
        self.prev_tickers: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        assert request.url.params["apiKey"] == "test-key"
        path = request.url.path
        if "/grouped/" in path:
            day = path.rsplit("/", 1)[-1]
            self.grouped_dates.append(day)
            canned = self.grouped.get(day, [])
            if isinstance(canned, httpx.Response):
                return canned
            return httpx.Response(200, json={"status": "OK", "resultsCount": len(canned), "results": canned})
        if path.endswith("/prev"):
            ticker = path.split("/")[-2]
            self.prev_tickers.append(ticker)
            canned = self.prev.get(ticker)
            if isinstance(canned, httpx.Response):
                return canned
            if canned is None:
                return httpx.Response(200, json={"status": "OK", "resultsCount": 0, "results": []})
            return httpx.Response(200, json={"status": "OK", "results": [{"T": ticker, "c": canned, "t": TS_MS}]})
        return httpx.Response(404)


def _settings(tmp_path, **overrides) -> Settings:
    values = dict(
        data_mode="real",
        polygon_api_key="test-key",
        cache_dir=tmp_path,
        polygon_min_interval_s=0,
    )
    values.update(overrides)
    return Settings(**values)


def _service(tmp_path, http, tickers=TICKERS) -> UniverseQuoteService:
    client = PolygonClient(http, FetchGate(0, name="polygon"), "test-key")
    sources = [GroupedDailyQuoteSource(client, today=lambda: MONDAY), PreviousCloseQuoteSource(client)]
    return UniverseQuoteService(_settings(tmp_path), sources=sources, tickers=tickers)


def _row(ticker, close):
    return {"T": ticker, "c": close, "t": TS_MS, "o": close, "h": close, "l": close, "v": 1000}


# ---------------------------------------------------------------------------
# Date walk
# ---------------------------------------------------------------------------

def test_candidate_dates_skip_weekends():
    dates = candidate_trading_dates(MONDAY)
    assert dates == [
        date(2024, 6, 28), date(2024, 6, 27), date(2024, 6, 26), date(2024, 6, 25),
        date(2024, 6, 24), date(2024, 6, 21), date(2024, 6, 20),
    ]
    assert all(d.weekday() < 5 for d in dates)


# ---------------------------------------------------------------------------
# Tier fallthrough
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_seven_empty_bulk_dates_fall_through_to_previous_close(tmp_path):
    stub = StubPolygon(prev={
        "AAPL": 193.79,
        "MSFT": httpx.Response(500, json={"status": "ERROR", "error": "boom"}),
    })
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        quotes = await _service(tmp_path, http).get_universe_quotes()

    assert len(stub.grouped_dates) == 7
    assert len(set(stub.grouped_dates)) == 7
    assert sorted(stub.prev_tickers) == sorted(TICKERS)
    assert set(quotes) == {"AAPL"}
    assert quotes["AAPL"].price == 193.79
    assert quotes["AAPL"].source == PREVIOUS_CLOSE_SOURCE


@pytest.mark.asyncio
async def test_bulk_failure_retries_earlier_date_then_fills_gaps(tmp_path):
    stub = StubPolygon(
        grouped={
            "2024-06-28": httpx.Response(429, json={"status": "ERROR", "error": "rate limited"}),
            "2024-06-27": [
                _row("AAPL", 214.10),
                _row("MSFT", 452.85),
                _row("BRK.B", 0),
                _row("ZZZZ", 12.0),
            ],
        },
        prev={"BRK.B": 406.80},
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        quotes = await _service(tmp_path, http).get_universe_quotes()

    assert stub.grouped_dates == ["2024-06-28", "2024-06-27"]
    assert stub.prev_tickers == ["BRK.B"]
    assert set(quotes) == set(TICKERS)
    assert quotes["AAPL"].source == GROUPED_DAILY_SOURCE
    assert quotes["MSFT"].price == 452.85
    assert quotes["BRK.B"].source == PREVIOUS_CLOSE_SOURCE


@pytest.mark.asyncio
async def test_malformed_bulk_payload_is_skipped(tmp_path):
    stub = StubPolygon(
        grouped={"2024-06-28": httpx.Response(200, content=b"<html>oops</html>")},
        prev={"AAPL": 190.0, "MSFT": 440.0, "BRK.B": 400.0},
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        quotes = await _service(tmp_path, http).get_universe_quotes()

    assert len(stub.grouped_dates) == 7
    assert set(quotes) == set(TICKERS)


# ---------------------------------------------------------------------------
# Caching and single flight
# ---------------------------------------------------------------------------

FULL_DAY = {"2024-06-28": [_row("AAPL", 210.0), _row("MSFT", 450.0), _row("BRK.B", 405.0)]}


@pytest.mark.asyncio
async def test_concurrent_reads_share_one_refresh(tmp_path):
    stub = StubPolygon(grouped=FULL_DAY)
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        service = _service(tmp_path, http)
        first, second = await asyncio.gather(
            service.get_universe_quotes(),
            service.get_universe_quotes(),
        )

    assert stub.grouped_dates == ["2024-06-28"]
    assert first == second
    assert set(first) == set(TICKERS)


@pytest.mark.asyncio
async def test_memory_cache_then_force_refresh(tmp_path):
    stub = StubPolygon(grouped=FULL_DAY)
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        service = _service(tmp_path, http)
        await service.get_universe_quotes()
        await service.get_universe_quotes()
        assert len(stub.grouped_dates) == 1

        await service.get_universe_quotes(force_refresh=True)
        assert len(stub.grouped_dates) == 2


@pytest.mark.asyncio
async def test_disk_cache_survives_a_new_service(tmp_path):
    stub = StubPolygon(grouped=FULL_DAY)
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        await _service(tmp_path, http).get_universe_quotes()
        assert (tmp_path / "universe_quotes_real.json").exists()

        restarted = _service(tmp_path, http)
        quotes = await restarted.get_universe_quotes()

    assert len(stub.grouped_dates) == 1
    assert quotes["MSFT"].price == 450.0
    assert quotes["MSFT"].source == GROUPED_DAILY_SOURCE


@pytest.mark.asyncio
async def test_mock_disk_entry_is_never_served_in_real_mode(tmp_path):
    mock_service = UniverseQuoteService(Settings(data_mode="mock", cache_dir=tmp_path), tickers=TICKERS)
    await mock_service.get_universe_quotes()
    assert (tmp_path / "universe_quotes_mock.json").exists()

    stub = StubPolygon(grouped=FULL_DAY)
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        quotes = await _service(tmp_path, http).get_universe_quotes()

    assert stub.grouped_dates == ["2024-06-28"]
    assert quotes["AAPL"].price == 210.0
    assert quotes["AAPL"].source == GROUPED_DAILY_SOURCE


@pytest.mark.asyncio
async def test_cancelled_reader_leaves_refresh_running(tmp_path):
    stub = StubPolygon(grouped=FULL_DAY)
    release = asyncio.Event()

    async def held(request):
        await release.wait()
        return stub.handler(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(held)) as http:
        service = _service(tmp_path, http)
        first = asyncio.create_task(service.get_universe_quotes())
        second = asyncio.create_task(service.get_universe_quotes())
        await asyncio.sleep(0)

        first.cancel()
        release.set()
        quotes = await second
        with pytest.raises(asyncio.CancelledError):
            await first

    assert stub.grouped_dates == ["2024-06-28"]
    assert set(quotes) == set(TICKERS)


@pytest.mark.asyncio
async def test_get_quote_uses_previous_close_only(tmp_path):
    stub = StubPolygon(prev={"SNOW": 131.2})
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as http:
        service = _service(tmp_path, http)
        quote = await service.get_quote("SNOW")
        missing = await service.get_quote("NOPE")

    assert stub.grouped_dates == []
    assert quote is not None and quote.price == 131.2
    assert missing is None


# ---------------------------------------------------------------------------
# Configuration and mock mode
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_real_mode_without_api_key_raises(tmp_path):
    settings = _settings(tmp_path, polygon_api_key=None)
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))) as http:
        service = UniverseQuoteService(settings, http, FetchGate(0), tickers=TICKERS)
        with pytest.raises(ConfigurationError, match="POLYGON_API_KEY"):
            await service.get_universe_quotes()


def test_mock_price_is_deterministic():
    # "AAPL": seed 286 -> 30 + 286 + 27 * 0.33
    assert mock_price("AAPL") == 324.91
    assert mock_price("MSFT") == mock_price("MSFT")


@pytest.mark.asyncio
async def test_mock_mode_prices_every_ticker(tmp_path):
    service = UniverseQuoteService(Settings(data_mode="mock", cache_dir=tmp_path), tickers=TICKERS)
    quotes = await service.get_universe_quotes()

    assert set(quotes) == set(TICKERS)
    assert all(q.source == MOCK_SOURCE for q in quotes.values())
    assert quotes["AAPL"].price == 324.91
