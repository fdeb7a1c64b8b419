"""
SEC companyfacts normalizer.

Turns the raw companyfacts document (taxonomy -> concept -> units -> [fact])
into SecFacts: TTM revenue / operating income / EPS, YoY revenue growth,
operating margin and shares outstanding.

Concept / unit resolution:
  each metric has an ordered list of concept names and an ordered list of
  acceptable units; the first non-empty series wins.

TTM rules:
  - standalone quarter = fp in Q1..Q4 and, when start is present,
    45 <= (end - start).days <= 120  (drops YTD 6- and 9-month points)
  - de-duplicate on (fy, fp, end), keeping the most recently filed point
  - newest 4 by end date; span newest -> 4th newest must be <= 430 days
    (a gap means a missed filing, and the sum would not be twelve months)
  - sum of the 4 values
  - otherwise: most recent FY point's value
  - otherwise: None

Derived:
  operating_margin   = 100 * op_income_ttm / revenue_ttm       (None if revenue == 0)
  revenue_growth_yoy = 100 * (FY[0] - FY[1]) / |FY[1]|         (needs 2 distinct FY periods)
  as_of              = latest end date across revenue / op income / EPS series used
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Iterable

from valuescreen.models import FactPoint, SecFacts

logger = logging.getLogger(__name__)

QUARTER_TAGS = frozenset({"Q1", "Q2", "Q3", "Q4"})
QUARTER_MIN_DAYS = 45
QUARTER_MAX_DAYS = 120
ANNUAL_MIN_DAYS = 300
ANNUAL_MAX_DAYS = 400
TTM_MAX_SPAN_DAYS = 430

REVENUE_CONCEPTS = [
    "Revenues",
    "RevenueFromContractWithCustomerExcludingAssessedTax",
    "SalesRevenueNet",
]
OPERATING_INCOME_CONCEPTS = ["OperatingIncomeLoss"]
EPS_CONCEPTS = ["EarningsPerShareDiluted", "EarningsPerShareBasic"]
SHARES_CONCEPTS = [
    ("us-gaap", "CommonStockSharesOutstanding"),
    ("dei", "EntityCommonStockSharesOutstanding"),
]

USD = ["USD"]
USD_PER_SHARE = ["USD/shares"]
SHARES = ["shares"]


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _num(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)) and math.isfinite(v):
        return float(v)
    return None


def _parse_date(d: Any) -> date | None:
    if isinstance(d, str):
        try:
            return date.fromisoformat(d[:10])
        except ValueError:
            return None
    return None


def parse_fact_points(rows: Any) -> list[FactPoint]:
    """Raw unit series -> FactPoints. Rows without a finite val or a parseable end are dropped."""
    if not isinstance(rows, list):
        return []
    points: list[FactPoint] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        end = _parse_date(row.get("end"))
        val = _num(row.get("val"))
        if end is None or val is None:
            continue
        fy = row.get("fy")
        points.append(FactPoint(
            end=end,
            val=val,
            start=_parse_date(row.get("start")),
            filed=_parse_date(row.get("filed")),
            form=row.get("form") if isinstance(row.get("form"), str) else None,
            fp=str(row["fp"]).strip().upper() if row.get("fp") else None,
            fy=fy if isinstance(fy, int) and not isinstance(fy, bool) else None,
        ))
    return points


def get_fact_points(
    payload: dict[str, Any],
    concepts: Iterable[str],
    units: Iterable[str],
    taxonomy: str = "us-gaap",
) -> list[FactPoint]:
    """First non-empty series over concepts (in order) x acceptable units (in order)."""
    facts = payload.get("facts") if isinstance(payload, dict) else None
    tax = facts.get(taxonomy) if isinstance(facts, dict) else None
    if not isinstance(tax, dict):
        return []

    units = list(units)
    for concept in concepts:
        entry = tax.get(concept)
        unit_map = entry.get("units") if isinstance(entry, dict) else None
        if not isinstance(unit_map, dict):
            continue
        for unit in units:
            points = parse_fact_points(unit_map.get(unit))
            if points:
                return points
    return []


def _newest_first(points: Iterable[FactPoint]) -> list[FactPoint]:
    return sorted(points, key=lambda p: (p.end, p.filed or date.min), reverse=True)


# ---------------------------------------------------------------------------
# TTM
# ---------------------------------------------------------------------------

def is_standalone_quarter(p: FactPoint) -> bool:
    if p.fp not in QUARTER_TAGS:
        return False
    days = p.period_days
    return days is None or QUARTER_MIN_DAYS <= days <= QUARTER_MAX_DAYS


def is_annual(p: FactPoint) -> bool:
    if p.fp != "FY":
        return False
    days = p.period_days
    return days is None or ANNUAL_MIN_DAYS <= days <= ANNUAL_MAX_DAYS


def ttm_from_quarters(points: list[FactPoint]) -> float | None:
    seen: set[tuple] = set()
    unique: list[FactPoint] = []
    for p in _newest_first(p for p in points if is_standalone_quarter(p)):
        key = (p.fy, p.fp, p.end)
        if key in seen:
            continue
        seen.add(key)
        unique.append(p)
        if len(unique) == 4:
            break

    if len(unique) < 4:
        return None

    span_days = (unique[0].end - unique[3].end).days
    if span_days > TTM_MAX_SPAN_DAYS:
        logger.debug("[SEC][TTM] rejecting quarters spanning %d days", span_days)
        return None
    return sum(p.val for p in unique)


def annual_points(points: list[FactPoint]) -> list[FactPoint]:
    """FY points newest first, one per period end (most recently filed wins)."""
    out: list[FactPoint] = []
    seen_ends: set[date] = set()
    for p in _newest_first(p for p in points if is_annual(p)):
        if p.end in seen_ends:
            continue
        seen_ends.add(p.end)
        out.append(p)
    return out


def latest_annual_value(points: list[FactPoint]) -> float | None:
    annual = annual_points(points)
    return annual[0].val if annual else None


def compute_ttm(points: list[FactPoint]) -> float | None:
    ttm = ttm_from_quarters(points)
    if ttm is not None:
        return ttm
    return latest_annual_value(points)


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------

def operating_margin_pct(op_income_ttm: float | None, revenue_ttm: float | None) -> float | None:
    if op_income_ttm is None or revenue_ttm is None or revenue_ttm == 0:
        return None
    return op_income_ttm / revenue_ttm * 100


def revenue_growth_yoy(points: list[FactPoint]) -> float | None:
    annual = annual_points(points)
    if len(annual) < 2:
        return None
    current, prior = annual[0].val, annual[1].val
    if prior == 0:
        return None
    return (current - prior) / abs(prior) * 100


def latest_value(points: list[FactPoint]) -> float | None:
    ordered = _newest_first(points)
    return ordered[0].val if ordered else None


def latest_end(*point_sets: list[FactPoint]) -> datetime | None:
    ends = [p.end for points in point_sets for p in points]
    if not ends:
        return None
    newest = max(ends)
    return datetime(newest.year, newest.month, newest.day, tzinfo=timezone.utc)


def _shares_points(payload: dict[str, Any]) -> list[FactPoint]:
    for taxonomy, concept in SHARES_CONCEPTS:
        points = get_fact_points(payload, [concept], SHARES, taxonomy=taxonomy)
        if points:
            return points
    return []


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_company_facts(payload: dict[str, Any]) -> SecFacts:
    revenue_points = get_fact_points(payload, REVENUE_CONCEPTS, USD)
    op_income_points = get_fact_points(payload, OPERATING_INCOME_CONCEPTS, USD)
    eps_points = get_fact_points(payload, EPS_CONCEPTS, USD_PER_SHARE)
    shares_points = _shares_points(payload)

    revenue_ttm = compute_ttm(revenue_points)
    op_income_ttm = compute_ttm(op_income_points)

    return SecFacts(
        eps_ttm=compute_ttm(eps_points),
        revenue_ttm=revenue_ttm,
        operating_income_ttm=op_income_ttm,
        revenue_growth_yoy=revenue_growth_yoy(revenue_points),
        operating_margin=operating_margin_pct(op_income_ttm, revenue_ttm),
        shares_outstanding=latest_value(shares_points),
        as_of=latest_end(revenue_points, op_income_points, eps_points),
    )
