"""Shared fixtures: sample results, a fake cache server and a fake InfluxDB."""

import socketserver
import threading

import httpx
import pytest
from tenacity import wait_none

from influx_client import BaseClient, InfluxClient, InfluxConfig
from semcache.config import CacheConfig
from semcache.models import Result, Table
from semcache.repositories import CacheRepository, ConnectionPool

T0 = 1566086400000000000  # 2019-08-18T00:00:00Z
MINUTE = 60 * 1_000_000_000


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Keep tenacity retries but skip the backoff sleeps."""
    monkeypatch.setattr(BaseClient._request.retry, "wait", wait_none())
    monkeypatch.setattr(ConnectionPool._dial.retry, "wait", wait_none())


# =============================================================================
# Sample results
# =============================================================================


@pytest.fixture
def feet_result():
    """Single table, no tags."""
    return Result(
        tables=(
            Table(
                name="h2o_feet",
                columns=("time", "water_level"),
                rows=((T0, 8.12), (T0 + 6 * MINUTE, 8.005), (T0 + 12 * MINUTE, 7.887)),
            ),
        )
    )


@pytest.fixture
def quality_result():
    """Two tables from GROUP BY location."""
    return Result(
        tables=(
            Table(
                name="h2o_quality",
                tags={"location": "santa_monica"},
                columns=("time", "index"),
                rows=((T0, 99), (T0 + 6 * MINUTE, 56)),
            ),
            Table(
                name="h2o_quality",
                tags={"location": "coyote_creek"},
                columns=("time", "index"),
                rows=((T0, 41), (T0 + 6 * MINUTE, 11), (T0 + 12 * MINUTE, 38)),
            ),
        )
    )


@pytest.fixture
def mixed_result():
    """All scalar types, nulls and delimiter bytes inside string values."""
    return Result(
        tables=(
            Table(
                name="h2o_feet",
                tags={"location": "coyote_creek"},
                columns=("time", "water_level", "level description", "rising", "samples"),
                rows=(
                    (T0, 8.12, "between 6 and 9 feet", True, 3),
                    (T0 + MINUTE, -0.61, "line\r\nbreak ] [x] \n", False, -2),
                    (T0 + 2 * MINUTE, None, "", None, None),
                    (T0 + 3 * MINUTE, 1e-05, "_", True, 9223372036854775807),
                ),
            ),
        )
    )


def influx_body(result: Result) -> dict:
    """InfluxDB /query JSON body for a Result."""
    return {
        "results": [
            {
                "statement_id": 0,
                "series": [
                    {"name": t.name, "tags": t.tags, "columns": list(t.columns), "values": [list(r) for r in t.rows]}
                    for t in result.tables
                ],
            }
        ]
    }


@pytest.fixture
def to_influx_body():
    return influx_body


# =============================================================================
# Fake cache server
# =============================================================================


class _CacheHandler(socketserver.StreamRequestHandler):
    """SET/GET/DELETE over the line protocol, backed by a dict."""

    def handle(self):
        server = self.server
        while True:
            line = self.rfile.readline()
            if not line:
                return
            parts = line.rstrip(b"\r\n").split(b" ")
            command = parts[0]
            server.commands.append(command.decode())

            if command == b"SET":
                key, length, start, end, tables = parts[1:6]
                value = self.rfile.read(int(length))
                self.rfile.read(2)
                if server.reply is not None:
                    self.wfile.write(server.reply)
                    continue
                with server.lock:
                    server.store[key.decode()] = (value, int(start), int(end), int(tables))
                self.wfile.write(b"STORED\r\n")
            elif command == b"GET":
                if server.reply is not None:
                    self.wfile.write(server.reply)
                    continue
                key, start, end = parts[1].decode(), int(parts[2]), int(parts[3])
                with server.lock:
                    entry = server.store.get(key)
                if entry is not None and entry[1] <= end and start <= entry[2]:
                    self.wfile.write(entry[0] + b"\r\n")
                self.wfile.write(b"END\r\n")
            elif command == b"DELETE":
                with server.lock:
                    found = server.store.pop(parts[1].decode(), None)
                self.wfile.write(b"DELETED\r\n" if found else b"NOT_FOUND\r\n")
            else:
                self.wfile.write(b"ERROR\r\n")


class FakeCacheServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), _CacheHandler)
        self.store: dict[str, tuple[bytes, int, int, int]] = {}
        self.commands: list[str] = []
        self.reply: bytes | None = None
        self.lock = threading.Lock()


@pytest.fixture
def cache_server():
    server = FakeCacheServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def cache_config(cache_server):
    host, port = cache_server.server_address
    return CacheConfig(host=host, port=port, timeout=2.0, pool_size=2)


@pytest.fixture
def pool(cache_config):
    pool = ConnectionPool(cache_config)
    yield pool
    pool.close()


@pytest.fixture
def cache_repo(pool, cache_config):
    return CacheRepository(pool, cache_config)


# =============================================================================
# Fake InfluxDB
# =============================================================================

FIELD_KEYS = {
    "h2o_feet": [["level description", "string"], ["water_level", "float"]],
    "h2o_quality": [["index", "integer"]],
}


class FakeInflux:
    """httpx MockTransport handler answering /ping and /query."""

    def __init__(self):
        self.responses: dict[str, dict] = {}
        self.queries: list[str] = []
        self.failures: list[httpx.Response] = []

    def add(self, query: str, body: dict) -> None:
        self.responses[query] = body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        headers = {"X-Influxdb-Version": "1.8.10"}
        if self.failures:
            return self.failures.pop(0)
        if request.url.path == "/ping":
            return httpx.Response(204, headers=headers)

        query = request.url.params["q"]
        self.queries.append(query)
        if query.startswith("SHOW FIELD KEYS"):
            series = [
                {"name": name, "columns": ["fieldKey", "fieldType"], "values": values}
                for name, values in FIELD_KEYS.items()
            ]
            return httpx.Response(200, json={"results": [{"statement_id": 0, "series": series}]}, headers=headers)
        if query not in self.responses:
            body = {"results": [{"statement_id": 0, "error": f"unknown query: {query}"}]}
            return httpx.Response(400, json=body, headers=headers)
        return httpx.Response(200, json=self.responses[query], headers=headers)


@pytest.fixture
def fake_influx():
    return FakeInflux()


@pytest.fixture
def influx_client(fake_influx):
    config = InfluxConfig(url="http://influx.test:8086", database="NOAA_water_database")
    client = InfluxClient(config, transport=httpx.MockTransport(fake_influx))
    yield client
    client.close()
