"""InfluxDB query client - queries, field and tag schema lookups."""

import json

from loguru import logger

from influx_client.base import BaseClient, InfluxError, check_response
from influx_client.schemas import QueryResponseSchema


class InfluxClient(BaseClient):
    """Client for the InfluxDB 1.x HTTP API."""

    def ping(self) -> str:
        """GET /ping - returns the server version."""
        resp = self._request("GET", "/ping")
        if resp.status_code != 204:
            raise InfluxError(resp.text or f"received status code {resp.status_code} from server", resp.status_code)
        return resp.headers.get("X-Influxdb-Version", "")

    def query(
        self,
        command: str,
        database: str | None = None,
        epoch: str = "ns",
        parameters: dict | None = None,
    ) -> QueryResponseSchema:
        """POST /query - run a statement and decode the JSON response."""
        params = {"q": command, "db": database if database is not None else self._config.database}
        if epoch:
            params["epoch"] = epoch
        if parameters:
            params["params"] = json.dumps(parameters)

        resp = self._request("POST", "/query", params=params)
        check_response(resp)

        try:
            response = QueryResponseSchema.model_validate(resp.json())
        except ValueError as e:
            raise InfluxError(
                f"unable to decode json: received status code {resp.status_code} err: {e}", resp.status_code
            ) from e

        if resp.status_code != 200 and response.first_error() is None:
            raise InfluxError(f"received status code {resp.status_code} from server", resp.status_code)

        logger.debug("Query returned {} statement(s): {}", len(response.results), command)
        return response

    def field_keys(self, database: str | None = None) -> dict[str, dict[str, str]]:
        """SHOW FIELD KEYS - {measurement: {field: influx type}}."""
        db = database if database is not None else self._config.database
        response = self._checked(f'SHOW FIELD KEYS ON "{db}"', db)

        fields: dict[str, dict[str, str]] = {}
        for result in response.results:
            for series in result.series:
                fields[series.name] = {str(v[0]): str(v[1]) for v in series.values}
        return fields

    def tag_keys(self, database: str | None = None) -> dict[str, list[str]]:
        """SHOW TAG KEYS - {measurement: [tag key, ...]}."""
        db = database if database is not None else self._config.database
        response = self._checked(f'SHOW TAG KEYS ON "{db}"', db)

        tags: dict[str, list[str]] = {}
        for result in response.results:
            for series in result.series:
                tags[series.name] = [str(v[0]) for v in series.values]
        return tags

    def _checked(self, command: str, database: str) -> QueryResponseSchema:
        response = self.query(command, database, epoch="")
        error = response.first_error()
        if error:
            raise InfluxError(error)
        return response
