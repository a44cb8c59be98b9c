"""Central configuration for the segment matching engine.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Values may be overridden through environment variables
(optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
# SQLAlchemy URL of the route/segment store and the match cache table.
DATABASE_URL = os.getenv("SEGMENT_MATCH_DATABASE_URL", "sqlite:///segment_match.db")

# Connection pool sizing. Size the pool to the expected request concurrency;
# writes to the same cache key stay serialised by per-key locks regardless.
DB_POOL_SIZE = _env_int("SEGMENT_MATCH_DB_POOL_SIZE", 5)
DB_MAX_OVERFLOW = _env_int("SEGMENT_MATCH_DB_MAX_OVERFLOW", 10)
# Seconds to wait for a pooled connection before failing the request.
DB_POOL_TIMEOUT = _env_int("SEGMENT_MATCH_DB_POOL_TIMEOUT", 30)

# Log every SQL statement (debug only).
DB_ECHO = _env_bool("SEGMENT_MATCH_DB_ECHO", False)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------
# Tolerance (metres) used when a caller does not supply one.
DEFAULT_TOLERANCE_M = _env_float("SEGMENT_MATCH_DEFAULT_TOLERANCE_M", 15.0)

# Sort key applied to match listings when none is requested.
DEFAULT_SORT_KEY = os.getenv("SEGMENT_MATCH_DEFAULT_SORT_KEY", "distance")

# Maximum number of projected segment geometries kept in memory.
SEGMENT_GEOMETRY_CACHE_SIZE = _env_int("SEGMENT_MATCH_GEOMETRY_CACHE_SIZE", 128)


# ---------------------------------------------------------------------------
# Cache policy
# ---------------------------------------------------------------------------
# Age (seconds) after which a cached match list for a segment is recomputed.
# Per-activity resolved ranges and metrics never expire; they are only removed
# by explicit invalidation when segment or route geometry changes.
MATCH_CACHE_TTL_SECONDS = _env_int("SEGMENT_MATCH_CACHE_TTL_SECONDS", 3600)
