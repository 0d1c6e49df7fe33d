"""Tests for the cache protocol adapter and its connection pool."""

import socket

import pytest

from semcache.config import CacheConfig
from semcache.errors import CacheKeyError, CacheMiss, CacheServerError, CacheTimeout, TransportError
from semcache.models import CacheEntry, Result, Table
from semcache.repositories import CacheRepository, ConnectionPool
from semcache.services.codec import ResultCodec

QUALITY_QUERY = "SELECT index FROM h2o_quality WHERE randtag='2' GROUP BY location"


@pytest.fixture
def codec():
    return ResultCodec()


def make_entry(codec, query, result, key="k1"):
    start, end = result.time_range()
    return CacheEntry(
        key=key,
        value=codec.encode(result, query),
        start=start,
        end=end,
        table_count=len(result.tables),
    )


class TestPutGet:
    def test_round_trip(self, cache_repo, codec, quality_result):
        entry = make_entry(codec, QUALITY_QUERY, quality_result)
        cache_repo.put(entry)
        payload = cache_repo.get("k1", entry.start, entry.end)
        assert codec.decode(payload) == quality_result

    # Row-data lengths 0x0D0A and 0x2020 put CRLF and spaces inside the length field.
    @pytest.mark.parametrize("size", [3327, 8213])
    def test_length_field_with_terminator_bytes(self, cache_repo, codec, size):
        result = Result(tables=(Table("m", columns=("time", "s"), rows=((1, "x" * size),)),))
        entry = make_entry(codec, "SELECT s FROM m", result)
        cache_repo.put(entry)
        assert codec.decode(cache_repo.get("k1", 0, 1)) == result

    def test_put_is_idempotent(self, cache_repo, cache_server, codec, quality_result):
        entry = make_entry(codec, QUALITY_QUERY, quality_result)
        cache_repo.put(entry)
        cache_repo.put(entry)
        assert codec.decode(cache_repo.get("k1", entry.start, entry.end)) == quality_result
        assert len(cache_server.store) == 1

    def test_set_line(self, cache_repo, cache_server, codec, feet_result):
        entry = make_entry(codec, "SELECT water_level FROM h2o_feet", feet_result)
        cache_repo.put(entry)
        value, start, end, tables = cache_server.store["k1"]
        assert (value, start, end, tables) == (entry.value, entry.start, entry.end, 1)

    def test_miss(self, cache_repo):
        with pytest.raises(CacheMiss) as exc:
            cache_repo.get("absent", 0, 1)
        assert exc.value.key == "absent"

    def test_window_outside_entry_misses(self, cache_repo, codec, feet_result):
        entry = make_entry(codec, "SELECT water_level FROM h2o_feet", feet_result)
        cache_repo.put(entry)
        with pytest.raises(CacheMiss):
            cache_repo.get("k1", entry.end + 1, entry.end + 100)

    def test_delete(self, cache_repo, codec, feet_result):
        cache_repo.put(make_entry(codec, "SELECT water_level FROM h2o_feet", feet_result))
        assert cache_repo.delete("k1") is True
        assert cache_repo.delete("k1") is False
        with pytest.raises(CacheMiss):
            cache_repo.get("k1", 0, 2**62)


class TestKeys:
    @pytest.mark.parametrize("key", ["", "has space", "tab\tkey", "café", "x" * 451])
    def test_invalid(self, cache_repo, cache_server, key):
        with pytest.raises(CacheKeyError):
            cache_repo.get(key, 0, 1)
        assert cache_server.commands == []

    def test_limit_is_configurable(self, pool, cache_server):
        host, port = cache_server.server_address
        repo = CacheRepository(pool, CacheConfig(host=host, port=port, max_key_length=4))
        with pytest.raises(CacheKeyError):
            repo.delete("abcde")
        assert repo.delete("abcd") is False


class TestServerErrors:
    def test_error_reply_on_set(self, cache_repo, cache_server, codec, feet_result):
        cache_server.reply = b"SERVER_ERROR out of memory\r\n"
        with pytest.raises(CacheServerError, match="out of memory"):
            cache_repo.put(make_entry(codec, "SELECT water_level FROM h2o_feet", feet_result))

    def test_error_reply_on_get(self, cache_repo, cache_server):
        cache_server.reply = b"CLIENT_ERROR bad command line format\r\n"
        with pytest.raises(CacheServerError):
            cache_repo.get("k1", 0, 1)

    def test_unexpected_reply(self, cache_repo, cache_server):
        cache_server.reply = b"HELLO\r\n"
        with pytest.raises(TransportError):
            cache_repo.get("k1", 0, 1)

    def test_garbage_block_header(self, cache_repo, cache_server):
        cache_server.reply = b"notablock 12345678\r\n"
        with pytest.raises(TransportError):
            cache_repo.get("k1", 0, 1)


class TestPool:
    def test_connection_is_reused(self, cache_repo, pool):
        cache_repo.delete("a")
        cache_repo.delete("b")
        assert pool.idle == 1

    def test_connection_discarded_on_error(self, cache_repo, cache_server, pool):
        cache_repo.delete("a")
        assert pool.idle == 1
        cache_server.reply = b"HELLO\r\n"
        with pytest.raises(TransportError):
            cache_repo.get("a", 0, 1)
        assert pool.idle == 0

        cache_server.reply = None
        assert cache_repo.delete("a") is False

    def test_closed_pool(self, cache_repo, pool):
        pool.close()
        with pytest.raises(TransportError):
            cache_repo.delete("a")

    def test_timeout(self):
        listener = socket.socket()
        listener.bind(("127.0.0.1", 0))
        listener.listen()
        host, port = listener.getsockname()
        config = CacheConfig(host=host, port=port, timeout=0.2)
        pool = ConnectionPool(config)
        try:
            with pytest.raises(CacheTimeout):
                CacheRepository(pool, config).get("k1", 0, 1)
            assert pool.idle == 0
        finally:
            pool.close()
            listener.close()

    def test_refused_connection_is_retried(self):
        attempts = []

        def connect():
            attempts.append(1)
            raise ConnectionRefusedError("refused")

        config = CacheConfig(host="127.0.0.1", port=1, timeout=0.5)
        pool = ConnectionPool(config, connect=connect)
        with pytest.raises(TransportError) as exc:
            CacheRepository(pool, config).delete("k1")
        assert not isinstance(exc.value, CacheTimeout)
        assert len(attempts) == 3

    def test_unreachable_server(self):
        sock = socket.socket()
        sock.bind(("127.0.0.1", 0))
        host, port = sock.getsockname()
        sock.close()

        config = CacheConfig(host=host, port=port, timeout=0.5)
        pool = ConnectionPool(config)
        with pytest.raises(TransportError):
            CacheRepository(pool, config).get("k1", 0, 1)
