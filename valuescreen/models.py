"""
Data model shared by the cache, the services and the route layer.

No field is ever omitted: unavailable values are explicit None.
EnrichedTicker and CacheState are frozen; the orchestrator replaces them whole.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Literal

CacheStatus = Literal["cold", "loading", "ready", "error"]
PriceRange = Literal["1M", "6M", "1Y"]


@dataclass(frozen=True)
class ValueScoreBreakdown:
    """Four sub-scores, each an integer clamped to [0, 25]."""

    pe_score: int = 0
    ps_score: int = 0
    revenue_growth_score: int = 0
    operating_margin_score: int = 0


@dataclass(frozen=True)
class EnrichedTicker:
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
    score_breakdown: ValueScoreBreakdown
    fundamentals_as_of: datetime | None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if self.fundamentals_as_of is not None:
            d["fundamentals_as_of"] = self.fundamentals_as_of.isoformat()
        return d


@dataclass(frozen=True)
class UniverseQuote:
    price: float
    as_of: datetime
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {"price": self.price, "as_of": self.as_of.isoformat(), "source": self.source}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "UniverseQuote":
        return cls(
            price=float(d["price"]),
            as_of=datetime.fromisoformat(d["as_of"]),
            source=str(d["source"]),
        )


@dataclass(frozen=True)
class PricePoint:
    """One daily close, stamped at UTC midnight of the trading day."""

    day: datetime
    price: float

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.day.isoformat(), "price": self.price}


@dataclass(frozen=True)
class FactPoint:
    """One reported value for a concept in an SEC companyfacts series."""

    end: date
    val: float
    start: date | None = None
    filed: date | None = None
    form: str | None = None
    fp: str | None = None
    fy: int | None = None

    @property
    def period_days(self) -> int | None:
        if self.start is None:
            return None
        return (self.end - self.start).days


@dataclass(frozen=True)
class SecFacts:
    eps_ttm: float | None = None
    revenue_ttm: float | None = None
    operating_income_ttm: float | None = None
    revenue_growth_yoy: float | None = None
    operating_margin: float | None = None
    shares_outstanding: float | None = None
    as_of: datetime | None = None

    @classmethod
    def empty(cls) -> "SecFacts":
        return cls()


@dataclass(frozen=True)
class CikEntry:
    cik: str
    name: str | None = None


@dataclass(frozen=True)
class CacheState:
    status: CacheStatus = "cold"
    tickers: tuple[EnrichedTicker, ...] = field(default_factory=tuple)
    last_updated: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "tickers": [t.to_dict() for t in self.tickers],
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "error": self.error,
        }
