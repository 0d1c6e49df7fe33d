"""Base HTTP client with retry logic."""

from dataclasses import dataclass

import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

# Default settings
DEFAULT_URL = "http://localhost:8086"
DEFAULT_TIMEOUT = 60
DEFAULT_USER_AGENT = "InfluxDBClient"


class InfluxError(Exception):
    """InfluxDB request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


@dataclass(frozen=True)
class InfluxConfig:
    """Connection settings for an InfluxDB 1.x server."""

    url: str = DEFAULT_URL
    database: str = ""
    username: str = ""
    password: str = ""
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        scheme = httpx.URL(self.url).scheme
        if scheme not in ("http", "https"):
            raise ValueError(
                f"Unsupported protocol scheme: {scheme}, your address must start with http:// or https://"
            )


def _is_retryable_error(exc: BaseException) -> bool:
    """Check if exception is retryable (network errors + 5xx server errors)."""
    if isinstance(exc, (httpx.ReadError, httpx.ConnectError, httpx.TimeoutException)):
        return True
    return isinstance(exc, InfluxError) and exc.status_code is not None and exc.status_code >= 500


def check_response(resp: httpx.Response) -> None:
    """Reject responses that did not come from InfluxDB itself."""
    if not resp.headers.get("X-Influxdb-Version") and resp.status_code >= 500:
        body = resp.text
        if not body:
            raise InfluxError(f"received status code {resp.status_code} from downstream server", resp.status_code)
        raise InfluxError(
            f"received status code {resp.status_code} from downstream server, with response body: {body!r}",
            resp.status_code,
        )

    content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
    if content_type != "application/json":
        body = resp.content[:1024]
        if not body:
            raise InfluxError(
                f"expected json response, got empty body, with status: {resp.status_code}", resp.status_code
            )
        raise InfluxError(
            f"expected json response, got {content_type!r}, with status: {resp.status_code} "
            f"and response body: {body!r}",
            resp.status_code,
        )


class BaseClient:
    """Base synchronous HTTP client with exponential backoff."""

    def __init__(self, config: InfluxConfig, transport: httpx.BaseTransport | None = None):
        self._config = config
        auth = (config.username, config.password) if config.username else None
        self._client = httpx.Client(
            base_url=config.url,
            timeout=config.timeout,
            auth=auth,
            headers={"User-Agent": config.user_agent},
            transport=transport,
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )
        self._request_count = 0
        logger.info("{}: url={}", self.__class__.__name__, config.url)

    @property
    def config(self) -> InfluxConfig:
        return self._config

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()

    def close(self) -> None:
        logger.info("Total InfluxDB requests: {}", self._request_count)
        self._client.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
        retry=retry_if_exception(_is_retryable_error),
        reraise=True,
    )
    def _request(self, method: str, path: str, params: dict | None = None) -> httpx.Response:
        """HTTP request with retry logic."""
        self._request_count += 1
        resp = self._client.request(method, path, params=params)
        if resp.status_code >= 500:
            check_response(resp)
            raise InfluxError(resp.text or f"received status code {resp.status_code} from server", resp.status_code)
        return resp
