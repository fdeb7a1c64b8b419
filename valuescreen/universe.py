"""Fixed ranking universe: the 50 largest US-listed companies by market capitalisation."""

import re

from valuescreen.errors import ValidationError

UNIVERSE_AS_OF: str = "2024-06-28"
UNIVERSE_SOURCE: str = "Top 50 US-listed companies by market capitalisation"

UNIVERSE_TICKERS: tuple[str, ...] = (
    "MSFT", "AAPL", "NVDA", "GOOGL", "AMZN", "META", "BRK.B", "LLY", "AVGO", "TSLA",
    "JPM", "WMT", "V", "UNH", "XOM", "MA", "PG", "JNJ", "ORCL", "COST",
    "HD", "MRK", "ABBV", "BAC", "NFLX", "CVX", "KO", "AMD", "ADBE", "CRM",
    "PEP", "TMO", "QCOM", "LIN", "WFC", "TMUS", "CSCO", "ACN", "DHR", "MCD",
    "ABT", "DIS", "INTU", "TXN", "GE", "AMAT", "CAT", "VZ", "AMGN", "PFE",
)

_TICKER_RE = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")


def normalize_ticker(raw: str | None) -> str:
    """Trim + upper-case; raise ValidationError unless it looks like a listed symbol."""
    ticker = (raw or "").strip().upper()
    if not _TICKER_RE.fullmatch(ticker):
        raise ValidationError()
    return ticker


def is_universe_ticker(ticker: str) -> bool:
    return ticker.strip().upper() in UNIVERSE_TICKERS
