"""
SEC EDGAR client.

Endpoints:
  GET https://data.sec.gov/api/xbrl/companyfacts/CIK##########.json   concept -> unit -> [fact]
  GET https://www.sec.gov/files/company_tickers.json                   ticker -> cik_str, title

SEC requires a descriptive User-Agent ("Name email") on every request; the
caller passes it in (Settings.require_sec_user_agent). All requests go through
the shared SEC FetchGate.
"""

import logging
import math
from typing import Any

import httpx

from valuescreen.api_clients.fetch_gate import FetchGate
from valuescreen.config import HTTP_TIMEOUT_S
from valuescreen.errors import UpstreamRequestError
from valuescreen.models import CikEntry

logger = logging.getLogger(__name__)

COMPANY_FACTS_BASE: str = "https://data.sec.gov/api/xbrl/companyfacts"
COMPANY_TICKERS_URL: str = "https://www.sec.gov/files/company_tickers.json"


def pad_cik(cik: Any) -> str | None:
    """10-digit zero-padded CIK string, the form SEC URLs expect."""
    if isinstance(cik, bool):
        return None
    if isinstance(cik, float) and math.isfinite(cik):
        cik = int(cik)
    text = str(cik).strip()
    if not text.isdigit():
        return None
    return text.zfill(10)


def parse_company_tickers(payload: Any) -> dict[str, CikEntry]:
    """company_tickers.json ({"0": {"cik_str": 320193, "ticker": "AAPL", "title": ...}}) -> ticker map."""
    out: dict[str, CikEntry] = {}
    if not isinstance(payload, dict):
        return out
    for entry in payload.values():
        if not isinstance(entry, dict):
            continue
        ticker = str(entry.get("ticker") or "").strip().upper()
        cik = pad_cik(entry.get("cik_str"))
        if not ticker or cik is None:
            continue
        title = str(entry.get("title") or "").strip() or None
        out[ticker] = CikEntry(cik=cik, name=title)
    return out


class SecClient:
    def __init__(self, http: httpx.AsyncClient, gate: FetchGate, user_agent: str):
        self._http = http
        self._gate = gate
        self._user_agent = user_agent

    async def _get_json(self, url: str) -> Any:
        await self._gate.acquire()
        try:
            resp = await self._http.get(
                url,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
                timeout=HTTP_TIMEOUT_S,
            )
        except httpx.HTTPError as exc:
            raise UpstreamRequestError(f"SEC request failed: {exc}") from exc

        if resp.status_code == 429:
            raise UpstreamRequestError("SEC rate limit reached (429).")
        if not resp.is_success:
            raise UpstreamRequestError(f"SEC request failed ({resp.status_code}).")
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamRequestError("SEC returned a malformed JSON payload.") from exc

    async def fetch_company_facts(self, cik: str) -> dict[str, Any]:
        payload = await self._get_json(f"{COMPANY_FACTS_BASE}/CIK{cik}.json")
        if not isinstance(payload, dict):
            raise UpstreamRequestError(f"SEC companyfacts for CIK {cik} has an unexpected shape.")
        return payload

    async def fetch_company_tickers(self) -> dict[str, CikEntry]:
        payload = await self._get_json(COMPANY_TICKERS_URL)
        mapping = parse_company_tickers(payload)
        logger.info("[SEC][Tickers] live map loaded: %d tickers", len(mapping))
        return mapping
