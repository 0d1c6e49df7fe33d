"""Influx repository - query execution and field schema lookups."""

from loguru import logger

from influx_client import InfluxClient, InfluxError, SeriesSchema
from semcache.errors import QueryExecutionError
from semcache.models import Result, ScalarType, Table
from semcache.repositories.base import BaseRepository

# SHOW FIELD KEYS type names.
_FIELD_TYPES = {
    "float": ScalarType.FLOAT64,
    "integer": ScalarType.INT64,
    "unsigned": ScalarType.INT64,
    "string": ScalarType.STRING,
    "boolean": ScalarType.BOOL,
}


class InfluxRepository(BaseRepository):
    """Repository for InfluxDB queries."""

    def __init__(self, client: InfluxClient, database: str | None = None):
        super().__init__()
        self._client = client
        self._database = database or client.config.database

    @property
    def database(self) -> str:
        return self._database

    def execute(self, query: str) -> Result:
        """Run a query and convert its first statement into a Result."""
        try:
            response = self._client.query(query, self._database, epoch="ns")
        except InfluxError as e:
            raise QueryExecutionError(e.message) from e

        error = response.first_error()
        if error:
            raise QueryExecutionError(error)
        if not response.results:
            return Result()

        tables = tuple(self._table(series) for series in response.results[0].series)
        logger.debug("Query returned {} table(s)", len(tables))
        return Result(tables=tables)

    def field_type(self, measurement: str, field: str) -> ScalarType | None:
        """Declared type of a field, from SHOW FIELD KEYS."""
        try:
            fields = self._cached("field_keys", lambda: self._client.field_keys(self._database))
        except InfluxError as e:
            logger.warning("Field schema lookup failed: {}", e.message)
            return None
        return _FIELD_TYPES.get(fields.get(measurement, {}).get(field, ""))

    def _table(self, series: SeriesSchema) -> Table:
        columns = tuple(series.columns)
        # JSON drops the fraction of whole floats (2.0 -> 2).
        floats = {i for i, column in enumerate(columns) if self.field_type(series.name, column) == ScalarType.FLOAT64}
        rows = tuple(
            tuple(
                float(v) if i in floats and isinstance(v, int) and not isinstance(v, bool) else v
                for i, v in enumerate(row)
            )
            for row in series.values
        )
        return Table(name=series.name, tags=series.tags, columns=columns, rows=rows)
