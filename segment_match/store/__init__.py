"""Persistence: route/segment store, match cache and database plumbing."""

from .base import RouteStore
from .cache import MatchCache
from .database import build_engine, build_session_factory, init_db
from .sql_store import SqlRouteStore

__all__ = [
    "MatchCache",
    "RouteStore",
    "SqlRouteStore",
    "build_engine",
    "build_session_factory",
    "init_db",
]
