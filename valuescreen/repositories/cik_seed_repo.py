"""
Ticker -> SEC CIK seed file.

Written by the external seed script, read here. Schema:
  {"AAPL": {"cik": "0000320193", "name": "Apple Inc."}, ...}

A missing or unreadable file is not an error: the fundamentals service falls
back to the live SEC ticker map.
"""

import json
import logging
from pathlib import Path

from valuescreen.api_clients.sec_client import pad_cik
from valuescreen.models import CikEntry

logger = logging.getLogger(__name__)


def load_cik_seed(path: Path) -> dict[str, CikEntry]:
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("[Seed] %s not found; company names will come from the live SEC map", path)
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("[Seed] could not read %s: %s", path, exc)
        return {}

    if not isinstance(raw, dict):
        logger.warning("[Seed] %s is not a JSON object; ignoring", path)
        return {}

    seed: dict[str, CikEntry] = {}
    for ticker, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        cik = pad_cik(entry.get("cik"))
        if cik is None:
            continue
        name = str(entry.get("name") or "").strip() or None
        seed[str(ticker).strip().upper()] = CikEntry(cik=cik, name=name)

    logger.info("[Seed] loaded %d CIK entries from %s", len(seed), path)
    return seed
