"""
Route tests (mock data mode, no network).

Rules:
  - Startup kicks off a preload; /preload and /rankings report its progress.
  - /ticker serves cached universe rows and falls back to on-demand scoring.
  - /market/quote and /market/history serve single-ticker prices and closes.
  - Error types map to their HTTP status (bad symbol 400, missing credential 500).
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from valuescreen.config import Settings
from valuescreen.main import create_app
from valuescreen.services.quote_sources import mock_price
from valuescreen.universe import UNIVERSE_TICKERS


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_settings(tmp_path):
    seed_path = tmp_path / "sec_cik_map.json"
    seed_path.write_text(json.dumps({"AAPL": {"cik": "0000320193", "name": "Apple Inc."}}), encoding="utf-8")
    return Settings(data_mode="mock", cache_dir=tmp_path / "cache", seed_path=seed_path)


@pytest.fixture
def client(mock_settings):
    with TestClient(create_app(mock_settings)) as c:
        yield c


def _wait_settled(client, timeout_s=10.0):
    deadline = time.monotonic() + timeout_s
    while True:
        body = client.get("/preload").json()
        if body["status"] in ("ready", "error"):
            return body
        assert time.monotonic() < deadline, f"preload still {body['status']}"
        time.sleep(0.02)


# ---------------------------------------------------------------------------
# Cache routes
# ---------------------------------------------------------------------------

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_startup_preload_fills_rankings(client):
    _wait_settled(client)
    body = client.get("/rankings").json()

    assert body["status"] == "ready"
    assert body["error"] is None
    assert body["last_updated"] is not None
    assert [t["ticker"] for t in body["tickers"]] == list(UNIVERSE_TICKERS)

    aapl = next(t for t in body["tickers"] if t["ticker"] == "AAPL")
    assert aapl["company_name"] == "Apple Inc."
    assert aapl["eps_ttm"] == 6.43
    assert set(aapl["score_breakdown"]) == {
        "pe_score", "ps_score", "revenue_growth_score", "operating_margin_score",
    }


def test_every_field_present_even_when_null(client):
    _wait_settled(client)
    msft = next(t for t in client.get("/rankings").json()["tickers"] if t["ticker"] == "MSFT")
    assert msft["company_name"] is None
    assert set(msft) == {
        "ticker", "company_name", "latest_price", "market_cap", "pe_ttm", "ps", "eps_ttm",
        "revenue_ttm", "revenue_growth_yoy", "operating_margin", "value_score",
        "score_breakdown", "fundamentals_as_of",
    }


def test_post_preload_refresh(client):
    first = _wait_settled(client)

    resp = client.post("/preload", params={"refresh": 1})
    assert resp.json() == {"started": True, "force_refresh": True}

    # settle again after the forced run
    deadline = time.monotonic() + 10
    while True:
        body = client.get("/preload").json()
        if body["status"] == "ready" and body["last_updated"] != first["last_updated"]:
            break
        assert time.monotonic() < deadline
        time.sleep(0.02)


# ---------------------------------------------------------------------------
# /ticker
# ---------------------------------------------------------------------------

def test_ticker_served_from_cache(client):
    _wait_settled(client)
    resp = client.get("/ticker", params={"ticker": " aapl "})

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ready"
    assert body["ticker"]["ticker"] == "AAPL"
    assert body["ticker"]["company_name"] == "Apple Inc."


def test_ticker_out_of_universe_on_demand(client):
    _wait_settled(client)
    resp = client.get("/ticker", params={"ticker": "SNOW"})

    assert resp.status_code == 200
    row = resp.json()["ticker"]
    assert row["ticker"] == "SNOW"
    assert row["latest_price"] is not None
    assert row["pe_ttm"] is not None
    assert 0 <= row["value_score"] <= 100

    ranked = [t["ticker"] for t in client.get("/rankings").json()["tickers"]]
    assert "SNOW" not in ranked


@pytest.mark.parametrize("bad", ["", "12AB", "AB$C", "WAYTOOLONGSYMBOL"])
def test_ticker_rejects_malformed_symbol(client, bad):
    resp = client.get("/ticker", params={"ticker": bad})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Please provide a valid ticker symbol."


# ---------------------------------------------------------------------------
# /universe-quotes
# ---------------------------------------------------------------------------

def test_universe_quotes(client):
    body = client.get("/universe-quotes").json()

    assert body["tickers"] == list(UNIVERSE_TICKERS)
    assert set(body["quotes"]) == set(UNIVERSE_TICKERS)
    assert body["quotes"]["AAPL"]["price"] == 324.91
    assert body["quotes"]["AAPL"]["source"] == "Mock deterministic universe quote"


# ---------------------------------------------------------------------------
# /market
# ---------------------------------------------------------------------------

def test_market_quote(client):
    body = client.get("/market/quote", params={"ticker": "snow"}).json()
    assert body["ticker"] == "SNOW"
    assert body["price"] == mock_price("SNOW")
    assert body["source"] == "Mock deterministic universe quote"

    assert client.get("/market/quote", params={"ticker": "AB$C"}).status_code == 400


def test_market_history_ranges(client):
    one_month = client.get("/market/history", params={"ticker": "AAPL"})
    assert one_month.status_code == 200
    points = one_month.json()
    assert len(points) == 21
    assert set(points[0]) == {"date", "price"}
    assert points == sorted(points, key=lambda p: p["date"])

    one_year = client.get("/market/history", params={"ticker": "AAPL", "range": "1Y"}).json()
    assert len(one_year) == 252


@pytest.mark.parametrize("params", [{"ticker": "AAPL", "range": "5Y"}, {"ticker": "12AB"}])
def test_market_history_rejects_bad_input(client, params):
    assert client.get("/market/history", params=params).status_code == 400


# ---------------------------------------------------------------------------
# Real mode without credentials
# ---------------------------------------------------------------------------

def test_real_mode_without_credentials(tmp_path):
    settings = Settings(data_mode="real", cache_dir=tmp_path / "cache", seed_path=tmp_path / "seed.json")
    with TestClient(create_app(settings)) as c:
        body = _wait_settled(c)
        assert body["status"] == "error"
        assert "SEC_USER_AGENT" in body["error"]
        assert body["tickers"] == []

        resp = c.get("/universe-quotes")
        assert resp.status_code == 500
        assert "POLYGON_API_KEY" in resp.json()["detail"]
