"""
Fundamentals service: ticker -> SecFacts.

Identity resolution (real mode):
  1. seed file data/sec_cik_map.json              (reloaded at the start of each preload)
  2. live https://www.sec.gov/files/company_tickers.json
     fetched once per process, concurrent callers share one request;
     "BRK.B" is also tried as "BRK-B", the form SEC lists it under
  3. unresolved -> PartialDataError

Mock mode: deterministic synthetic facts from the ticker's character sum, with
hand-set values for AAPL and MSFT. No I/O.

Both modes keep a per-ticker TTL cache (24 h). Concurrent requests for the same
ticker share one fetch; force_refresh skips the TTL cache only.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

import httpx

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.api_clients.sec_client import SecClient
from valuescreen.config import Settings
from valuescreen.errors import PartialDataError, UpstreamRequestError
from valuescreen.models import CikEntry, SecFacts
from valuescreen.normalizers.sec_facts_normalizer import parse_company_facts
from valuescreen.repositories.cik_seed_repo import load_cik_seed
from valuescreen.services.quote_sources import ticker_seed

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Mock facts
# ---------------------------------------------------------------------------

KNOWN_MOCK_FACTS: dict[str, dict[str, float]] = {
    "AAPL": {
        "eps_ttm": 6.43,
        "revenue_ttm": 383_300_000_000,
        "revenue_growth_yoy": 2.8,
        "operating_margin": 30.1,
        "shares_outstanding": 15_400_000_000,
    },
    "MSFT": {
        "eps_ttm": 11.8,
        "revenue_ttm": 236_600_000_000,
        "revenue_growth_yoy": 15.4,
        "operating_margin": 44.6,
        "shares_outstanding": 7_440_000_000,
    },
}


def mock_facts(ticker: str) -> SecFacts:
    now = datetime.now(timezone.utc)
    known = KNOWN_MOCK_FACTS.get(ticker)
    if known is not None:
        return SecFacts(
            eps_ttm=known["eps_ttm"],
            revenue_ttm=known["revenue_ttm"],
            operating_income_ttm=known["revenue_ttm"] * known["operating_margin"] / 100,
            revenue_growth_yoy=known["revenue_growth_yoy"],
            operating_margin=known["operating_margin"],
            shares_outstanding=known["shares_outstanding"],
            as_of=now,
        )

    seed = ticker_seed(ticker)
    revenue = 6_000_000_000 + (seed % 220) * 900_000_000
    op_income = revenue * (0.05 + (seed % 26) * 0.012)
    prior_revenue = revenue / (1 + (-0.04 + (seed % 18) * 0.015))
    return SecFacts(
        eps_ttm=1.2 + (seed % 80) / 10,
        revenue_ttm=revenue,
        operating_income_ttm=op_income,
        revenue_growth_yoy=(revenue - prior_revenue) / abs(prior_revenue) * 100,
        operating_margin=op_income / revenue * 100,
        shares_outstanding=500_000_000 + (seed % 200) * 10_000_000,
        as_of=now,
    )


def _sec_aliases(ticker: str) -> list[str]:
    alias = ticker.replace(".", "-")
    return [ticker] if alias == ticker else [ticker, alias]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class FundamentalsService:
    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
        sec_gate: FetchGate | None = None,
        sec_client: SecClient | None = None,
    ):
        self._settings = settings
        self._http = http
        self._sec_gate = sec_gate
        self._sec_client = sec_client

        self._seed: dict[str, CikEntry] = {}
        self._live_map: dict[str, CikEntry] | None = None
        self._live_map_inflight: asyncio.Task | None = None

        self._cache: dict[str, tuple[float, SecFacts]] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._fetch_facts = self._fetch_real if settings.is_real else self._fetch_mock

    # -- identity ----------------------------------------------------------

    def load_seed(self, path: Path | None = None) -> dict[str, CikEntry]:
        self._seed = load_cik_seed(path or self._settings.seed_path)
        return self._seed

    def company_name(self, ticker: str) -> str | None:
        entry = self._seed.get(ticker)
        if entry is not None and entry.name:
            return entry.name
        if self._live_map is not None:
            for alias in _sec_aliases(ticker):
                live = self._live_map.get(alias)
                if live is not None and live.name:
                    return live.name
        return None

    def _client(self) -> SecClient:
        if self._sec_client is None:
            user_agent = self._settings.require_sec_user_agent()
            if self._http is None or self._sec_gate is None:
                raise ValueError("real data mode needs an http client and an SEC gate")
            self._sec_client = SecClient(self._http, self._sec_gate, user_agent)
        return self._sec_client

    async def _get_live_map(self) -> dict[str, CikEntry]:
        if self._live_map is not None:
            return self._live_map
        if self._live_map_inflight is None:
            self._live_map_inflight = asyncio.get_running_loop().create_task(self._load_live_map())
        return await asyncio.shield(self._live_map_inflight)

    async def _load_live_map(self) -> dict[str, CikEntry]:
        try:
            mapping = await self._client().fetch_company_tickers()
            self._live_map = mapping
            return mapping
        finally:
            self._live_map_inflight = None

    async def resolve_cik(self, ticker: str) -> CikEntry | None:
        entry = self._seed.get(ticker)
        if entry is not None:
            return entry

        try:
            live = await self._get_live_map()
        except UpstreamRequestError as exc:
            logger.warning("[SEC][Tickers] live map unavailable: %s", exc.message)
            return None

        for alias in _sec_aliases(ticker):
            if alias in live:
                return live[alias]
        return None

    # -- facts -------------------------------------------------------------

    async def get_facts(self, ticker: str, force_refresh: bool = False) -> SecFacts:
        """
        Normalized facts for one ticker.

        Raises PartialDataError when the ticker has no CIK, UpstreamRequestError
        when the companyfacts fetch fails, ConfigurationError when SEC_USER_AGENT
        is missing in real mode.
        """
        if not force_refresh:
            cached = self._cache.get(ticker)
            if cached is not None and cached[0] > time.monotonic():
                return cached[1]

        task = self._inflight.get(ticker)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch(ticker))
            self._inflight[ticker] = task
        return await asyncio.shield(task)

    async def _fetch(self, ticker: str) -> SecFacts:
        try:
            facts = await self._fetch_facts(ticker)
            self._cache[ticker] = (time.monotonic() + self._settings.fundamentals_ttl_s, facts)
            return facts
        finally:
            self._inflight.pop(ticker, None)

    async def _fetch_mock(self, ticker: str) -> SecFacts:
        return mock_facts(ticker)

    async def _fetch_real(self, ticker: str) -> SecFacts:
        client = self._client()
        entry = await self.resolve_cik(ticker)
        if entry is None:
            raise PartialDataError(f"{ticker} was not found in the SEC company mapping.")

        payload = await client.fetch_company_facts(entry.cik)
        facts = parse_company_facts(payload)
        logger.info(
            "[SEC][Facts] %s (CIK %s): eps_ttm=%s revenue_ttm=%s as_of=%s",
            ticker, entry.cik, facts.eps_ttm, facts.revenue_ttm,
            facts.as_of.date().isoformat() if facts.as_of else None,
        )
        return facts
