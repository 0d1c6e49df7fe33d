"""Application settings."""

import os
from pathlib import Path

# Database
INFLUX_URL = os.getenv("SEMCACHE_INFLUX_URL", "http://localhost:8086")
INFLUX_DB = os.getenv("SEMCACHE_INFLUX_DB", "NOAA_water_database")
INFLUX_USERNAME = os.getenv("SEMCACHE_INFLUX_USERNAME", "")
INFLUX_PASSWORD = os.getenv("SEMCACHE_INFLUX_PASSWORD", "")
INFLUX_TIMEOUT = 60

# Cache server
CACHE_HOST = os.getenv("SEMCACHE_CACHE_HOST", "localhost")
CACHE_PORT = int(os.getenv("SEMCACHE_CACHE_PORT", "11213"))
CACHE_TIMEOUT = float(os.getenv("SEMCACHE_CACHE_TIMEOUT", "5.0"))
CACHE_POOL_SIZE = int(os.getenv("SEMCACHE_CACHE_POOL_SIZE", "8"))
CACHE_MAX_KEY_LENGTH = int(os.getenv("SEMCACHE_MAX_KEY_LENGTH", "450"))

# Merge
MERGE_PRECISION = os.getenv("SEMCACHE_MERGE_PRECISION", "h")

# Logging
LOG_DIR = Path(os.getenv("SEMCACHE_LOG_DIR", "logs"))
