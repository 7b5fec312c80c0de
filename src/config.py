"""
Configuration for the MF Compass sync job.

Runtime settings come from the environment (optionally a .env file in the
project root). Scoring constants live here as immutable module-level data and
are injected into the scorer, aggregator and normalizer at construction.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from types import MappingProxyType

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parent.parent

# ---------------------------------------------------------------------------
# Scoring constants
# ---------------------------------------------------------------------------
PERIODS = ("returns_1w", "returns_1y", "returns_3y", "returns_5y", "returns_inception")

# 1Y/3Y dominate (a full market cycle), 1W keeps a trace of recency.
DEFAULT_WEIGHTS = MappingProxyType({
    "returns_1y": 0.3499,
    "returns_3y": 0.3999,
    "returns_5y": 0.2499,
    "returns_1w": 0.0003,
})

NEGATIVE_RETURN_PENALTY = 1.5
SCORE_RANGE = (50.0, 100.0)

PRIMARY_CATEGORIES = (
    "Large Cap Fund",
    "Mid Cap Fund",
    "Small Cap Fund",
    "Flexi Cap Fund",
    "ELSS",
)
BLENDED_CATEGORIES = (
    "Aggressive Hybrid Fund",
    "Dynamic Asset Allocation or Balanced Advantage",
    "Multi Asset Allocation",
)
BLENDED_CATEGORY_NAME = "Hybrid"

EQUITY_FALLBACK_KEY = "equity_other"
OTHER_FALLBACK_KEY = "unknown"

ALLOWED_CATEGORIES = MappingProxyType({
    "Equity": PRIMARY_CATEGORIES,
    "Hybrid": BLENDED_CATEGORIES,
})

EXCLUDED_NAME_KEYWORDS = (
    "idcw",
    "reinvestment",
    "segregated",
    "bonus",
    "dividend",
    "payout",
    "income distribution",
)


def load_env() -> None:
    """Load .env from project root if present."""
    env_path = ROOT_DIR / ".env"
    load_dotenv(env_path)


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the sync operations."""

    database_url: str = "sqlite:///mf_compass.db"
    log_level: str = "INFO"
    fetch_batch_size: int = 5
    fetch_batch_delay: float = 0.2
    store_batch_size: int = 10
    min_aum_crores: float = 10.0
    max_excluded_rating: int = 3
    flush_delay: float = 3.0
    cache_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        DATABASE_URL falls back to a local SQLite file so the scoring
        commands still work on a developer machine.
        """
        load_env()
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            database_url = cls.database_url
            logger.warning(f"DATABASE_URL not set, using default: {database_url}")
        return cls(
            database_url=database_url,
            log_level=os.environ.get("LOG_LEVEL", cls.log_level).upper(),
            fetch_batch_size=_env_int("FETCH_BATCH_SIZE", cls.fetch_batch_size),
            fetch_batch_delay=_env_float("FETCH_BATCH_DELAY", cls.fetch_batch_delay),
            store_batch_size=_env_int("STORE_BATCH_SIZE", cls.store_batch_size),
            min_aum_crores=_env_float("MIN_AUM_CRORES", cls.min_aum_crores),
            max_excluded_rating=_env_int("MAX_EXCLUDED_RATING", cls.max_excluded_rating),
            flush_delay=_env_float("FLUSH_DELAY", cls.flush_delay),
            cache_dir=os.environ.get("CACHE_DIR") or None,
        )
