"""
Runtime configuration.

Read once from the environment (main.py loads .env first). The data mode only
selects which fetch strategy is wired in; credentials are checked lazily so
mock mode runs without any of them.

  DATA_MODE               mock | real            (default mock)
  POLYGON_API_KEY         quotes, real mode
  SEC_USER_AGENT          fundamentals, real mode ("Jane Doe jane@example.com")
  VALUESCREEN_CACHE_DIR   JSON file cache        (default data/cache)
  VALUESCREEN_SEED_PATH   ticker -> CIK seed     (default data/sec_cik_map.json)
  POLYGON_MIN_INTERVAL_S  Polygon gate spacing   (default 12, free tier = 5 req/min)
  SEC_MIN_INTERVAL_S      SEC gate spacing       (default 1.0)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping

from valuescreen.errors import ConfigurationError

DataMode = Literal["mock", "real"]

POLYGON_MIN_INTERVAL_S: float = 12.0
SEC_MIN_INTERVAL_S: float = 1.0
QUOTE_TTL_S: float = 10 * 60
FUNDAMENTALS_TTL_S: float = 24 * 60 * 60
HISTORY_TTL_S: float = 12 * 60 * 60
HTTP_TIMEOUT_S: float = 30.0


@dataclass(frozen=True)
class Settings:
    data_mode: DataMode = "mock"
    polygon_api_key: str | None = None
    sec_user_agent: str | None = None
    cache_dir: Path = Path("data") / "cache"
    seed_path: Path = Path("data") / "sec_cik_map.json"
    polygon_min_interval_s: float = POLYGON_MIN_INTERVAL_S
    sec_min_interval_s: float = SEC_MIN_INTERVAL_S
    quote_ttl_s: float = QUOTE_TTL_S
    fundamentals_ttl_s: float = FUNDAMENTALS_TTL_S
    history_ttl_s: float = HISTORY_TTL_S

    @property
    def is_real(self) -> bool:
        return self.data_mode == "real"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        mode = (env.get("DATA_MODE") or "mock").strip().lower()
        if mode not in ("mock", "real"):
            raise ConfigurationError(f"DATA_MODE must be 'mock' or 'real', got {mode!r}.")

        return cls(
            data_mode=mode,
            polygon_api_key=(env.get("POLYGON_API_KEY") or "").strip() or None,
            sec_user_agent=(env.get("SEC_USER_AGENT") or "").strip() or None,
            cache_dir=Path(env.get("VALUESCREEN_CACHE_DIR") or cls.cache_dir),
            seed_path=Path(env.get("VALUESCREEN_SEED_PATH") or cls.seed_path),
            polygon_min_interval_s=_float_env(env, "POLYGON_MIN_INTERVAL_S", POLYGON_MIN_INTERVAL_S),
            sec_min_interval_s=_float_env(env, "SEC_MIN_INTERVAL_S", SEC_MIN_INTERVAL_S),
        )

    def require_polygon_api_key(self) -> str:
        if not self.polygon_api_key:
            raise ConfigurationError("Missing POLYGON_API_KEY environment variable.")
        return self.polygon_api_key

    def require_sec_user_agent(self) -> str:
        if not self.sec_user_agent:
            raise ConfigurationError("Missing SEC_USER_AGENT environment variable.")
        return self.sec_user_agent


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number of seconds, got {raw!r}.") from exc
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative.")
    return value
