"""
Enrichment cache orchestrator.

Owns the enriched universe and its lifecycle:

  cold ──trigger──▶ loading ──ok──▶ ready
                       │              │
                       └──fatal──▶ error ──trigger──▶ loading

Preload pipeline (one asyncio.Task, at most one in flight):
  1. reload the ticker -> CIK seed                      (missing file is fine)
  2. universe quotes, one coordinated call              (empty map is fatal)
  3. per ticker: SEC facts -> ratios -> value score     (failure isolated to the ticker)
  4. swap in a new CacheState                           (status=ready, last_updated=now)

A fatal failure, or cancellation of the run itself, sets status="error" with a
message and keeps the previous tickers and last_updated, so readers keep the
last good snapshot. Services await shared in-flight work through asyncio.shield,
so a cancelled reader never cancels the run.

Readers call get_cache_snapshot(): never blocks, never fetches.
enrich_ticker() is the on-demand path for symbols outside the universe; it
raises instead of degrading and never touches the cache.
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Sequence

from valuescreen.config import Settings
from valuescreen.errors import ConfigurationError, PipelineFatalError, ValueScreenError
from valuescreen.models import CacheState, EnrichedTicker, SecFacts, UniverseQuote
from valuescreen.services.fundamentals_service import FundamentalsService
from valuescreen.services.metrics_calculator import build_enriched_ticker
from valuescreen.services.universe_quotes import UniverseQuoteService
from valuescreen.universe import UNIVERSE_TICKERS, normalize_ticker

logger = logging.getLogger(__name__)


class PreloadResult:
    def __init__(self, total: int, force_refresh: bool):
        self.total = total
        self.force_refresh = force_refresh
        self.priced = 0
        self.degraded: dict[str, str] = {}

    def ticker_degraded(self, ticker: str, error: str) -> None:
        logger.warning("[Preload] %s: fundamentals unavailable - %s", ticker, error)
        self.degraded[ticker] = error

    def summary(self) -> str:
        return (
            f"{self.total} tickers, {self.priced} priced, "
            f"{self.total - len(self.degraded)} with fundamentals"
        )


class EnrichmentOrchestrator:
    def __init__(
        self,
        settings: Settings,
        quotes: UniverseQuoteService,
        fundamentals: FundamentalsService,
        tickers: Sequence[str] = UNIVERSE_TICKERS,
    ):
        self._settings = settings
        self._quotes = quotes
        self._fundamentals = fundamentals
        self.tickers = tuple(tickers)

        self._state = CacheState()
        self._inflight: asyncio.Task | None = None
        self.last_result: PreloadResult | None = None

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def get_cache_snapshot(self) -> CacheState:
        return self._state

    # ------------------------------------------------------------------
    # Preload
    # ------------------------------------------------------------------

    def trigger_preload(self, force_refresh: bool = False) -> asyncio.Future:
        """
        Start a preload unless one is running or the cache is already ready.

        Returns the in-flight task (shared by every caller until it finishes),
        or an already-completed future when there is nothing to do. Status is
        "loading" by the time this returns.
        """
        loop = asyncio.get_running_loop()

        if self._inflight is not None:
            return self._inflight

        if self._state.status == "ready" and not force_refresh:
            done = loop.create_future()
            done.set_result(None)
            return done

        self._state = replace(self._state, status="loading", error=None)
        self._inflight = loop.create_task(self._run(force_refresh))
        logger.info("[Preload] started (force_refresh=%s)", force_refresh)
        return self._inflight

    async def _run(self, force_refresh: bool) -> None:
        result = PreloadResult(len(self.tickers), force_refresh)
        started = time.monotonic()
        try:
            tickers = await self._build_universe(force_refresh, result)
        except asyncio.CancelledError:
            logger.warning("[Preload] cancelled after %.1fs", time.monotonic() - started)
            self._state = replace(self._state, status="error", error="Preload was cancelled.")
            raise
        except Exception as exc:
            message = exc.message if isinstance(exc, ValueScreenError) else (str(exc) or PipelineFatalError.message)
            logger.exception("[Preload] FAILED after %.1fs: %s", time.monotonic() - started, message)
            self._state = replace(self._state, status="error", error=message)
        else:
            self._state = CacheState(
                status="ready",
                tickers=tuple(tickers),
                last_updated=datetime.now(timezone.utc),
                error=None,
            )
            logger.info("[Preload] ready in %.1fs: %s", time.monotonic() - started, result.summary())
        finally:
            self.last_result = result
            self._inflight = None

    async def _build_universe(self, force_refresh: bool, result: PreloadResult) -> list[EnrichedTicker]:
        if self._settings.is_real:
            self._settings.require_sec_user_agent()

        self._fundamentals.load_seed()

        quotes = await self._quotes.get_universe_quotes(force_refresh=force_refresh)
        if not quotes:
            raise PipelineFatalError("No quotes could be fetched for the ticker universe.")
        result.priced = sum(1 for t in self.tickers if t in quotes)

        enriched: list[EnrichedTicker] = []
        for ticker in self.tickers:
            enriched.append(await self._enrich_one(ticker, quotes.get(ticker), force_refresh, result))
        return enriched

    async def _enrich_one(
        self,
        ticker: str,
        quote: UniverseQuote | None,
        force_refresh: bool,
        result: PreloadResult,
    ) -> EnrichedTicker:
        try:
            facts = await self._fundamentals.get_facts(ticker, force_refresh=force_refresh)
        except ConfigurationError:
            raise
        except Exception as exc:
            result.ticker_degraded(ticker, str(exc))
            facts = SecFacts.empty()

        return build_enriched_ticker(
            ticker=ticker,
            company_name=self._fundamentals.company_name(ticker),
            price=quote.price if quote is not None else None,
            facts=facts,
        )

    async def aclose(self) -> None:
        """Process shutdown: drop a preload still in flight."""
        task = self._inflight
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("[Preload] cancelled at shutdown")

    # ------------------------------------------------------------------
    # On-demand
    # ------------------------------------------------------------------

    async def enrich_ticker(self, raw_ticker: str, force_refresh: bool = False) -> EnrichedTicker:
        """
        Score one symbol outside the cached universe.

        ValidationError for a malformed symbol (before any upstream call);
        PartialDataError, UpstreamRequestError and ConfigurationError propagate.
        A missing quote only nulls the price-dependent fields.
        """
        ticker = normalize_ticker(raw_ticker)
        facts = await self._fundamentals.get_facts(ticker, force_refresh=force_refresh)
        quote = await self._quotes.get_quote(ticker)
        return build_enriched_ticker(
            ticker=ticker,
            company_name=self._fundamentals.company_name(ticker),
            price=quote.price if quote is not None else None,
            facts=facts,
        )
