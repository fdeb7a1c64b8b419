"""
Universe quote service.

One price per universe ticker, shared by the preload pipeline and the routes.

Read order for get_universe_quotes():
  1. in-memory map, if younger than the quote TTL (10 min)
  2. the refresh already in flight, if any      (awaited through asyncio.shield:
                                                 a cancelled caller leaves it running)
  3. the on-disk entry "universe_quotes_<mode>"  (survives a restart; one entry per
                                                 data mode)
  4. a new refresh through the source chain
force_refresh skips 1 and 3 but still joins 2.

A refresh never raises for a missing price: tickers nobody could price are
left out of the map. It does raise ConfigurationError (no POLYGON_API_KEY in
real mode).
"""

import asyncio
import logging
import time
from typing import Any, Sequence

import httpx

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.config import Settings
from valuescreen.models import UniverseQuote
from valuescreen.repositories.file_cache import read_cache, write_cache
from valuescreen.services.quote_sources import QuoteSource, build_quote_sources
from valuescreen.universe import UNIVERSE_TICKERS

logger = logging.getLogger(__name__)

UNIVERSE_CACHE_KEY = "universe_quotes"


def universe_cache_key(settings: Settings) -> str:
    return f"{UNIVERSE_CACHE_KEY}_{settings.data_mode}"


def _quotes_from_cache(raw: Any) -> dict[str, UniverseQuote]:
    if not isinstance(raw, dict):
        return {}
    out: dict[str, UniverseQuote] = {}
    for ticker, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        try:
            out[ticker] = UniverseQuote.from_dict(entry)
        except (KeyError, TypeError, ValueError):
            continue
    return out


class UniverseQuoteService:
    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
        polygon_gate: FetchGate | None = None,
        sources: list[QuoteSource] | None = None,
        tickers: Sequence[str] = UNIVERSE_TICKERS,
    ):
        self._settings = settings
        self._http = http
        self._polygon_gate = polygon_gate
        self._sources = sources
        self.tickers = tuple(tickers)
        self._cache_key = universe_cache_key(settings)

        self._quotes: dict[str, UniverseQuote] = {}
        self._expires_at: float = 0.0
        self._inflight: asyncio.Task | None = None

    def _get_sources(self) -> list[QuoteSource]:
        if self._sources is None:
            self._sources = build_quote_sources(self._settings, self._http, self._polygon_gate)
        return self._sources

    def _memory_fresh(self) -> bool:
        return bool(self._quotes) and self._expires_at > time.monotonic()

    def _remember(self, quotes: dict[str, UniverseQuote]) -> None:
        self._quotes = dict(quotes)
        self._expires_at = time.monotonic() + self._settings.quote_ttl_s

    async def get_universe_quotes(self, force_refresh: bool = False) -> dict[str, UniverseQuote]:
        if not force_refresh and self._memory_fresh():
            return dict(self._quotes)

        if self._inflight is not None:
            logger.debug("[Quotes] joining in-flight refresh")
            return dict(await asyncio.shield(self._inflight))

        if not force_refresh:
            from_disk = _quotes_from_cache(read_cache(self._settings.cache_dir, self._cache_key))
            if from_disk:
                logger.info("[Quotes] loaded %d quotes from file cache", len(from_disk))
                self._remember(from_disk)
                return dict(from_disk)

        self._inflight = asyncio.get_running_loop().create_task(self._refresh())
        return dict(await asyncio.shield(self._inflight))

    async def _refresh(self) -> dict[str, UniverseQuote]:
        try:
            quotes: dict[str, UniverseQuote] = {}
            for source in self._get_sources():
                missing = [t for t in self.tickers if t not in quotes]
                if not missing:
                    break
                quotes.update(await source.fetch(missing))

            logger.info("[Quotes] refresh priced %d/%d tickers", len(quotes), len(self.tickers))
            self._remember(quotes)
            write_cache(
                self._settings.cache_dir,
                self._cache_key,
                {t: q.to_dict() for t, q in quotes.items()},
                self._settings.quote_ttl_s,
            )
            return quotes
        finally:
            self._inflight = None

    async def get_quote(self, ticker: str, force_refresh: bool = False) -> UniverseQuote | None:
        """Fresh universe entry, else one per-ticker quote. None when nothing is usable."""
        if not force_refresh and self._memory_fresh() and ticker in self._quotes:
            return self._quotes[ticker]

        for source in self._get_sources():
            if source.bulk:
                continue
            found = await source.fetch([ticker])
            if ticker in found:
                return found[ticker]
        return None
