"""Cache entry - one keyed payload stored on the cache server."""

import struct
from dataclasses import dataclass

CRLF = b"\r\n"

# Row-data length that follows every block header.
LENGTH = struct.Struct(">q")


@dataclass(frozen=True)
class CacheEntry:
    """Key, encoded payload and the time window it covers."""

    key: str
    value: bytes
    start: int
    end: int
    table_count: int

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"start {self.start} after end {self.end}")
        if self.table_count < 0:
            raise ValueError(f"negative table count: {self.table_count}")

    @property
    def size(self) -> int:
        return len(self.value)
