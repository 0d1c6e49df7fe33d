"""Cache repository - SET/GET/DELETE against the cache server."""

from loguru import logger

from semcache.config import CacheConfig
from semcache.errors import CacheKeyError, CacheMiss, CacheServerError, TransportError
from semcache.models import CacheEntry
from semcache.models.cache import CRLF, LENGTH
from semcache.repositories.base import BaseRepository
from semcache.repositories.pool import Connection, ConnectionPool

_ERROR_REPLIES = (b"ERROR", b"CLIENT_ERROR", b"SERVER_ERROR", b"NOT_STORED")


def _reply_error(line: bytes) -> Exception:
    text = line.decode("utf-8", errors="replace")
    if line.split(b" ", 1)[0] in _ERROR_REPLIES:
        return CacheServerError(text)
    return TransportError(f"unexpected reply from cache server: {text!r}")


class CacheRepository(BaseRepository):
    """Repository for cache server operations."""

    def __init__(self, pool: ConnectionPool, config: CacheConfig):
        super().__init__()
        self._pool = pool
        self._config = config

    @property
    def max_key_length(self) -> int:
        return self._config.max_key_length

    def validate_key(self, key: str) -> None:
        """Keys must be non-empty printable ASCII without whitespace."""
        if not key:
            raise CacheKeyError("empty cache key")
        if len(key) > self._config.max_key_length:
            raise CacheKeyError(f"cache key is {len(key)} bytes, limit is {self._config.max_key_length}")
        bad = next((c for c in key if not 33 <= ord(c) <= 126), None)
        if bad is not None:
            raise CacheKeyError(f"cache key contains invalid character {bad!r}")

    def put(self, entry: CacheEntry) -> None:
        """SET an entry; the server must answer STORED."""
        self.validate_key(entry.key)
        command = f"SET {entry.key} {entry.size} {entry.start} {entry.end} {entry.table_count}\r\n"

        with self._pool.connection() as conn:
            conn.send(command.encode("ascii") + entry.value + CRLF)
            reply = conn.read_line()
            if reply != b"STORED":
                raise _reply_error(reply)
        logger.debug("Cache stored: key={}, bytes={}, tables={}", entry.key, entry.size, entry.table_count)

    def get(self, key: str, start: int, end: int) -> bytes:
        """GET the blocks stored under a key for a time window."""
        self.validate_key(key)

        with self._pool.connection() as conn:
            conn.send(f"GET {key} {start} {end}\r\n".encode("ascii"))
            payload, blocks = self._read_blocks(conn)

        if not blocks:
            logger.debug("Cache miss: {}", key)
            raise CacheMiss(key)
        logger.debug("Cache hit: key={}, blocks={}, bytes={}", key, blocks, len(payload))
        return payload

    def delete(self, key: str) -> bool:
        """DELETE a key; False when it was not present."""
        self.validate_key(key)

        with self._pool.connection() as conn:
            conn.send(f"DELETE {key}\r\n".encode("ascii"))
            reply = conn.read_line()
            if reply not in (b"DELETED", b"NOT_FOUND"):
                raise _reply_error(reply)

        logger.debug("Cache delete: key={}, found={}", key, reply == b"DELETED")
        return reply == b"DELETED"

    @staticmethod
    def _read_blocks(conn: Connection) -> tuple[bytes, int]:
        payload = bytearray()
        blocks = 0
        while True:
            token, delimiter = conn.read_token()
            if delimiter == CRLF:
                if not token:
                    continue
                if token == b"END":
                    return bytes(payload), blocks
                raise _reply_error(token)
            if token in _ERROR_REPLIES:
                raise _reply_error(token + b" " + conn.read_line())
            if not token.startswith(b"{"):
                raise TransportError(f"unexpected block header from cache server: {token[:64]!r}")

            raw_length = conn.read_exact(LENGTH.size)
            if conn.read_exact(len(CRLF)) != CRLF:
                raise TransportError("malformed block header from cache server")
            (length,) = LENGTH.unpack(raw_length)
            if length < 0:
                raise TransportError(f"negative block length from cache server: {length}")

            payload += token + b" " + raw_length + CRLF + conn.read_exact(length)
            blocks += 1
