"""Repositories package - cache server and database access."""

from semcache.repositories.base import BaseRepository
from semcache.repositories.cache import CacheRepository
from semcache.repositories.influx import InfluxRepository
from semcache.repositories.pool import Connection, ConnectionPool

__all__ = [
    # Base
    "BaseRepository",
    # Cache server
    "Connection",
    "ConnectionPool",
    "CacheRepository",
    # Database
    "InfluxRepository",
]
