"""
Price-dependent ratios and EnrichedTicker assembly.

  P/E        = price / eps_ttm                 (eps_ttm != 0)
  market cap = price * shares_outstanding
  P/S        = market_cap / revenue_ttm        (revenue_ttm != 0)

Any missing or non-finite operand makes the ratio None. A negative EPS gives a
negative P/E, which the score engine treats as 0.
"""

import math
from typing import Any

from valuescreen.models import EnrichedTicker, SecFacts
from valuescreen.services.value_score import calculate_value_score


def _is_num(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def _safe_div(a: Any, b: Any) -> float | None:
    """Return a/b or None if either is non-numeric or b==0."""
    if not _is_num(a) or not _is_num(b) or b == 0:
        return None
    return a / b


def _safe_mul(a: Any, b: Any) -> float | None:
    if not _is_num(a) or not _is_num(b):
        return None
    return a * b


def compute_pe(price: float | None, eps_ttm: float | None) -> float | None:
    return _safe_div(price, eps_ttm)


def compute_market_cap(price: float | None, shares: float | None) -> float | None:
    return _safe_mul(price, shares)


def compute_ps(market_cap: float | None, revenue_ttm: float | None) -> float | None:
    return _safe_div(market_cap, revenue_ttm)


def build_enriched_ticker(
    ticker: str,
    company_name: str | None,
    price: float | None,
    facts: SecFacts,
) -> EnrichedTicker:
    latest_price = price if _is_num(price) and price > 0 else None
    market_cap = compute_market_cap(latest_price, facts.shares_outstanding)
    pe_ttm = compute_pe(latest_price, facts.eps_ttm)
    ps = compute_ps(market_cap, facts.revenue_ttm)

    value_score, breakdown = calculate_value_score(
        pe_ttm=pe_ttm,
        ps=ps,
        revenue_growth_yoy=facts.revenue_growth_yoy,
        operating_margin=facts.operating_margin,
    )

    return EnrichedTicker(
        ticker=ticker,
        company_name=company_name,
        latest_price=latest_price,
        market_cap=market_cap,
        pe_ttm=pe_ttm,
        ps=ps,
        eps_ttm=facts.eps_ttm,
        revenue_ttm=facts.revenue_ttm,
        revenue_growth_yoy=facts.revenue_growth_yoy,
        operating_margin=facts.operating_margin,
        value_score=value_score,
        score_breakdown=breakdown,
        fundamentals_as_of=facts.as_of,
    )
