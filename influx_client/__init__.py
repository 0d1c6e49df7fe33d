"""InfluxDB HTTP client package."""

from influx_client.base import BaseClient, InfluxConfig, InfluxError, check_response
from influx_client.client import InfluxClient
from influx_client.schemas import (
    MessageSchema,
    QueryResponseSchema,
    SeriesSchema,
    StatementSchema,
)

__all__ = [
    # Base
    "BaseClient",
    "InfluxConfig",
    "InfluxError",
    "check_response",
    # Clients
    "InfluxClient",
    # Schemas
    "QueryResponseSchema",
    "StatementSchema",
    "SeriesSchema",
    "MessageSchema",
]
