"""Connection pool - persistent sockets to the cache server."""

import socket
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from semcache.config import CacheConfig
from semcache.errors import CacheTimeout, TransportError
from semcache.models.cache import CRLF

RECV_SIZE = 65536


class Connection:
    """One socket to the cache server; one command in flight at a time."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._buffer = bytearray()
        self._deadline: float | None = None

    def begin(self, timeout: float) -> None:
        """Start a command with the given deadline (seconds from now)."""
        self._deadline = time.monotonic() + timeout

    def _remaining(self) -> float | None:
        if self._deadline is None:
            return None
        left = self._deadline - time.monotonic()
        if left <= 0:
            raise CacheTimeout("cache command deadline exceeded")
        return left

    def send(self, data: bytes) -> None:
        try:
            self._sock.settimeout(self._remaining())
            self._sock.sendall(data)
        except TimeoutError as e:
            raise CacheTimeout("timed out sending to cache server") from e
        except OSError as e:
            raise TransportError(f"send to cache server failed: {e}") from e

    def _fill(self) -> None:
        try:
            self._sock.settimeout(self._remaining())
            chunk = self._sock.recv(RECV_SIZE)
        except TimeoutError as e:
            raise CacheTimeout("timed out waiting for cache server") from e
        except OSError as e:
            raise TransportError(f"receive from cache server failed: {e}") from e
        if not chunk:
            raise TransportError("connection closed by cache server")
        self._buffer += chunk

    def read_line(self) -> bytes:
        """Read up to CRLF; the terminator is consumed, not returned."""
        while True:
            end = self._buffer.find(CRLF)
            if end >= 0:
                line = bytes(self._buffer[:end])
                del self._buffer[: end + len(CRLF)]
                return line
            self._fill()

    def read_token(self) -> tuple[bytes, bytes]:
        """Read up to the first space or CRLF; returns (token, delimiter)."""
        while True:
            space = self._buffer.find(b" ")
            eol = self._buffer.find(CRLF)
            if space >= 0 and (eol < 0 or space < eol):
                token = bytes(self._buffer[:space])
                del self._buffer[: space + 1]
                return token, b" "
            if eol >= 0:
                token = bytes(self._buffer[:eol])
                del self._buffer[: eol + len(CRLF)]
                return token, CRLF
            self._fill()

    def read_exact(self, n: int) -> bytes:
        while len(self._buffer) < n:
            self._fill()
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        return data

    @property
    def has_pending(self) -> bool:
        """Unread bytes left over from the previous reply."""
        return bool(self._buffer)

    def close(self) -> None:
        self._buffer.clear()
        try:
            self._sock.close()
        except OSError as e:
            logger.debug("Error closing cache connection: {}", e)


class ConnectionPool:
    """Bounded LIFO pool of cache server connections."""

    def __init__(self, config: CacheConfig, connect: Callable[[], socket.socket] | None = None):
        self._config = config
        self._connect = connect or self._open_socket
        self._idle: list[Connection] = []
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(config.pool_size)
        self._closed = False
        logger.debug("ConnectionPool initialized: {}:{} (size={})", config.host, config.port, config.pool_size)

    @property
    def idle(self) -> int:
        with self._lock:
            return len(self._idle)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Scoped acquisition; the connection is discarded if the block raises."""
        if self._closed:
            raise TransportError("connection pool is closed")
        if not self._slots.acquire(timeout=self._config.timeout):
            raise CacheTimeout("no free cache connection")

        conn = None
        try:
            conn = self._checkout()
            conn.begin(self._config.timeout)
            yield conn
        except BaseException:
            if conn is not None:
                conn.close()
                logger.debug("Discarded cache connection")
            raise
        else:
            self._checkin(conn)
        finally:
            self._slots.release()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            conn.close()
        logger.info("Closed {} cache connection(s)", len(idle))

    def _checkout(self) -> Connection:
        with self._lock:
            if self._idle:
                return self._idle.pop()
        return self._open()

    def _checkin(self, conn: Connection) -> None:
        if conn.has_pending:
            conn.close()
            logger.warning("Discarded cache connection with unread reply bytes")
            return
        with self._lock:
            if not self._closed:
                self._idle.append(conn)
                return
        conn.close()

    def _open(self) -> Connection:
        try:
            sock = self._dial()
        except TimeoutError as e:
            raise CacheTimeout(f"timed out connecting to {self._config.host}:{self._config.port}") from e
        except OSError as e:
            raise TransportError(f"cannot connect to {self._config.host}:{self._config.port}: {e}") from e
        logger.debug("Opened cache connection to {}:{}", self._config.host, self._config.port)
        return Connection(sock)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, max=0.5),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True,
    )
    def _dial(self) -> socket.socket:
        """Connect, retrying refused or reset connections."""
        return self._connect()

    def _open_socket(self) -> socket.socket:
        sock = socket.create_connection((self._config.host, self._config.port), timeout=self._config.timeout)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return sock
