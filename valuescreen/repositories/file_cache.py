"""
Flat JSON file cache.

One file per key under the cache dir:
  {"expires_at": <epoch seconds>, "value": <json>}

Keys are sanitised to [A-Za-z0-9_-]. Reads and writes are best-effort:
a missing, expired or corrupt file reads as None, and a failed write is logged
and otherwise ignored.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def _cache_path(cache_dir: Path, key: str) -> Path:
    return Path(cache_dir) / f"{_UNSAFE.sub('_', key)}.json"


def read_cache(cache_dir: Path, key: str) -> Any | None:
    path = _cache_path(cache_dir, key)
    if not path.exists():
        return None
    try:
        entry = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("[FileCache] unreadable entry %s: %s", path.name, exc)
        return None
    if not isinstance(entry, dict):
        return None
    expires_at = entry.get("expires_at")
    if not isinstance(expires_at, (int, float)) or expires_at <= time.time():
        return None
    return entry.get("value")


def write_cache(cache_dir: Path, key: str, value: Any, ttl_s: float) -> None:
    path = _cache_path(cache_dir, key)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        entry = {"expires_at": time.time() + ttl_s, "value": value}
        path.write_text(json.dumps(entry), encoding="utf-8")
    except (OSError, TypeError, ValueError) as exc:
        logger.warning("[FileCache] could not write %s: %s", path.name, exc)
