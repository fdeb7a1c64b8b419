"""
Settings, ticker universe, JSON file cache and CIK seed loading.
"""

import json
from pathlib import Path

import pytest

from valuescreen.config import POLYGON_MIN_INTERVAL_S, Settings
from valuescreen.errors import ConfigurationError
from valuescreen.repositories.cik_seed_repo import load_cik_seed
from valuescreen.repositories.file_cache import read_cache, write_cache
from valuescreen.universe import UNIVERSE_TICKERS, is_universe_ticker, normalize_ticker


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_defaults_to_mock_mode():
    settings = Settings.from_env({})
    assert settings.data_mode == "mock"
    assert settings.is_real is False
    assert settings.polygon_min_interval_s == POLYGON_MIN_INTERVAL_S
    assert settings.seed_path == Path("data") / "sec_cik_map.json"


def test_real_mode_reads_credentials():
    settings = Settings.from_env({
        "DATA_MODE": " REAL ",
        "POLYGON_API_KEY": "pk",
        "SEC_USER_AGENT": "Jane Doe jane@example.com",
        "SEC_MIN_INTERVAL_S": "0.5",
    })
    assert settings.is_real
    assert settings.require_polygon_api_key() == "pk"
    assert settings.require_sec_user_agent() == "Jane Doe jane@example.com"
    assert settings.sec_min_interval_s == 0.5


def test_unknown_mode_rejected():
    with pytest.raises(ConfigurationError, match="DATA_MODE"):
        Settings.from_env({"DATA_MODE": "live"})


def test_bad_interval_rejected():
    with pytest.raises(ConfigurationError, match="POLYGON_MIN_INTERVAL_S"):
        Settings.from_env({"POLYGON_MIN_INTERVAL_S": "fast"})
    with pytest.raises(ConfigurationError):
        Settings.from_env({"SEC_MIN_INTERVAL_S": "-1"})


def test_missing_credentials_name_the_variable():
    settings = Settings.from_env({"DATA_MODE": "real", "POLYGON_API_KEY": "   "})
    with pytest.raises(ConfigurationError, match="POLYGON_API_KEY"):
        settings.require_polygon_api_key()
    with pytest.raises(ConfigurationError, match="SEC_USER_AGENT"):
        settings.require_sec_user_agent()


# ---------------------------------------------------------------------------
# Universe
# ---------------------------------------------------------------------------

def test_universe_is_fifty_unique_symbols():
    assert len(UNIVERSE_TICKERS) == 50
    assert len(set(UNIVERSE_TICKERS)) == 50
    assert all(normalize_ticker(t) == t for t in UNIVERSE_TICKERS)


def test_universe_membership():
    assert is_universe_ticker("AAPL")
    assert is_universe_ticker(" brk.b ")
    assert not is_universe_ticker("SNOW")
    assert not is_universe_ticker("BRK-B")


# ---------------------------------------------------------------------------
# File cache
# ---------------------------------------------------------------------------

def test_cache_write_then_read(tmp_path):
    write_cache(tmp_path, "universe_quotes", {"AAPL": {"price": 1.5}}, ttl_s=60)
    assert read_cache(tmp_path, "universe_quotes") == {"AAPL": {"price": 1.5}}


def test_cache_expired_entry_is_a_miss(tmp_path):
    write_cache(tmp_path, "k", [1, 2, 3], ttl_s=-1)
    assert read_cache(tmp_path, "k") is None


def test_cache_missing_and_corrupt_are_misses(tmp_path):
    assert read_cache(tmp_path, "nothing") is None
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert read_cache(tmp_path, "broken") is None


def test_cache_key_is_sanitised(tmp_path):
    write_cache(tmp_path, "../escape me", "v", ttl_s=60)
    assert (tmp_path / "___escape_me.json").exists()
    assert read_cache(tmp_path, "../escape me") == "v"


# ---------------------------------------------------------------------------
# CIK seed
# ---------------------------------------------------------------------------

def test_seed_missing_file_is_empty(tmp_path):
    assert load_cik_seed(tmp_path / "absent.json") == {}


def test_seed_parses_and_pads(tmp_path):
    path = tmp_path / "seed.json"
    path.write_text(json.dumps({
        "aapl": {"cik": 320193, "name": "Apple Inc."},
        "MSFT": {"cik": "0000789019", "name": ""},
        "BAD": {"cik": "not-a-cik"},
        "JUNK": "nope",
    }), encoding="utf-8")

    seed = load_cik_seed(path)

    assert set(seed) == {"AAPL", "MSFT"}
    assert seed["AAPL"].cik == "0000320193"
    assert seed["AAPL"].name == "Apple Inc."
    assert seed["MSFT"].name is None


def test_seed_non_object_is_ignored(tmp_path):
    path = tmp_path / "seed.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert load_cik_seed(path) == {}
