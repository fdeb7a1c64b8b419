"""
Value score engine.

Pure function of four nullable metrics -> integer total 0..100 plus four
integer sub-scores 0..25. Deterministic, no I/O.

Sub-scores (each rounded with round(), then clamped to [0, 25]):
  P/E       0 if null / non-finite / <= 0, else 25 * (1 - (pe - 10) / 30)
            full at pe <= 10, zero at pe >= 40
  P/S       null treated as worst case (10), then 25 * (1 - (ps - 1) / 9)
            full at ps <= 1, zero at ps >= 10
  Growth    25 * max(0, growth%) / 20          full at >= 20 % YoY
  Margin    25 * max(0, margin%) / 25          full at >= 25 % operating margin

Total = sum of the clamped sub-scores, clamped again to [0, 100].
round() is Python's ties-to-even: a raw 12.5 scores 12.
"""

import math
from typing import Any

from valuescreen.models import ValueScoreBreakdown

SUB_SCORE_MAX = 25
TOTAL_MAX = 100

PE_FULL_AT = 10.0
PE_ZERO_SPAN = 30.0
PS_FULL_AT = 1.0
PS_ZERO_SPAN = 9.0
PS_NULL_AS = 10.0
GROWTH_FULL_AT = 20.0
MARGIN_FULL_AT = 25.0


def _num(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)) and math.isfinite(v):
        return float(v)
    return None


def _clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))


def _sub_score(raw: float) -> int:
    return _clamp(round(raw), 0, SUB_SCORE_MAX)


def calc_pe_score(pe_ttm: float | None) -> int:
    pe = _num(pe_ttm)
    if pe is None or pe <= 0:
        return 0
    return _sub_score(SUB_SCORE_MAX * (1 - (pe - PE_FULL_AT) / PE_ZERO_SPAN))


def calc_ps_score(ps: float | None) -> int:
    value = _num(ps)
    if value is None:
        value = PS_NULL_AS
    return _sub_score(SUB_SCORE_MAX * (1 - (value - PS_FULL_AT) / PS_ZERO_SPAN))


def calc_revenue_growth_score(revenue_growth_yoy: float | None) -> int:
    growth = _num(revenue_growth_yoy)
    if growth is None:
        return 0
    return _sub_score(SUB_SCORE_MAX * max(0.0, growth) / GROWTH_FULL_AT)


def calc_operating_margin_score(operating_margin: float | None) -> int:
    margin = _num(operating_margin)
    if margin is None:
        return 0
    return _sub_score(SUB_SCORE_MAX * max(0.0, margin) / MARGIN_FULL_AT)


def calculate_value_score(
    pe_ttm: float | None,
    ps: float | None,
    revenue_growth_yoy: float | None,
    operating_margin: float | None,
) -> tuple[int, ValueScoreBreakdown]:
    breakdown = ValueScoreBreakdown(
        pe_score=calc_pe_score(pe_ttm),
        ps_score=calc_ps_score(ps),
        revenue_growth_score=calc_revenue_growth_score(revenue_growth_yoy),
        operating_margin_score=calc_operating_margin_score(operating_margin),
    )
    total = (
        breakdown.pe_score
        + breakdown.ps_score
        + breakdown.revenue_growth_score
        + breakdown.operating_margin_score
    )
    return _clamp(total, 0, TOTAL_MAX), breakdown
