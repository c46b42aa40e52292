"""
Streaming adapters for large uploads and downloads.

A Stream pairs a local binary file object with a transfer strategy:

- StreamWrite (upload): the strategy is asked for the next chunk and returns
  b"" at end of stream. Default: ChunkReader.
- StreamRead (download): the strategy receives every chunk of the response.
  Default: ChunkWriter.

Both strategies are plain objects, so a caller can pass its own callable via
closure() instead.

Usage:
    with open("events.csv", "rb") as source:
        ch.transport.stream_write(StreamWrite(source), "INSERT INTO events FORMAT CSV")
"""

import logging
import struct
import zlib
from typing import Any, BinaryIO, Callable, Optional

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

# Magic, deflate method, no flags, zero mtime.
GZIP_HEADER_PREFIX = b"\x1f\x8b\x08\x00\x00\x00\x00\x00"
# Extra flags and OS (unknown), completing the 10-byte gzip header.
GZIP_HEADER_TAIL = b"\x00\xff"


# =============================================================================
# Strategies
# =============================================================================

class ChunkReader:
    """Upload strategy: read fixed-size chunks from a local stream."""

    def __init__(self, stream: BinaryIO, chunk_size: int = CHUNK_SIZE):
        self.stream = stream
        self.chunk_size = chunk_size

    def __call__(self, length: Optional[int] = None) -> bytes:
        data = self.stream.read(length or self.chunk_size)
        if not data:
            return b""
        return data if isinstance(data, bytes) else data.encode("utf-8")


class ChunkWriter:
    """Download strategy: write every received chunk to a local stream."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def __call__(self, chunk: bytes) -> int:
        self.stream.write(chunk)
        return len(chunk)


class GzipChunkReader:
    """Wrap an upload strategy so the chunks it yields form one gzip member."""

    def __init__(self, reader: Callable[[int], bytes]):
        self.reader = reader
        self._compressor = zlib.compressobj(6, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
        self._finished = False

    def __call__(self, length: Optional[int] = None) -> bytes:
        if self._finished:
            return b""

        # Small inputs may compress to nothing; keep reading until output or EOF.
        while True:
            data = self.reader(length or CHUNK_SIZE)
            if not data:
                self._finished = True
                return self._compressor.flush()
            compressed = self._compressor.compress(data)
            if compressed:
                return compressed


# =============================================================================
# Stream adapters
# =============================================================================

class Stream:
    """
    Duplex adapter around a local binary stream.

    Args:
        source: Binary file object (read for uploads, written for downloads)
    """

    def __init__(self, source: BinaryIO):
        self._stream = source
        self._closure: Optional[Callable[..., Any]] = None
        self._gzip = False

    def is_write(self) -> bool:
        raise NotImplementedError

    def closure(self, callable_: Callable[..., Any]) -> "Stream":
        """Use a custom transfer callable instead of the default strategy."""
        self._closure = callable_
        return self

    def get_closure(self) -> Optional[Callable[..., Any]]:
        return self._closure

    def get_stream(self) -> BinaryIO:
        return self._stream

    def enable_gzip_header(self) -> "Stream":
        self._gzip = True
        return self

    def is_gzip_header(self) -> bool:
        return self._gzip

    def apply_gzip(self) -> "Stream":
        return self.enable_gzip_header()

    def default_strategy(self) -> Callable[..., Any]:
        raise NotImplementedError

    def strategy(self) -> Callable[..., Any]:
        """The transfer callable: the custom closure or the default strategy."""
        return self._closure if self._closure is not None else self.default_strategy()

    def close(self) -> None:
        try:
            self._stream.close()
        except Exception as e:
            logger.warning(f"Failed to close stream: {e}")


class StreamRead(Stream):
    """Download: the response body is written into the local stream."""

    def is_write(self) -> bool:
        return False

    def default_strategy(self) -> Callable[[bytes], int]:
        return ChunkWriter(self._stream)


class StreamWrite(Stream):
    """Upload: the local stream is sent as the request body."""

    def is_write(self) -> bool:
        return True

    def default_strategy(self) -> Callable[[int], bytes]:
        return ChunkReader(self._stream)

    def strategy(self) -> Callable[[int], bytes]:
        strategy = super().strategy()
        if self.is_gzip_header():
            return GzipChunkReader(strategy)
        return strategy


# =============================================================================
# Result file sink
# =============================================================================

class ResultSink:
    """
    Local file receiving a select's result stream.

    With gzip on, the file was seeded with GZIP_HEADER_PREFIX when opened;
    the sink completes the header, deflates the body and writes the
    CRC32/size trailer on close, leaving a valid gzip file.
    """

    def __init__(self, handle: BinaryIO, gzip: bool = False):
        self.handle = handle
        self.gzip = gzip
        self.closed = False
        self._crc = 0
        self._size = 0
        self._header_done = False
        self._compressor = zlib.compressobj(6, zlib.DEFLATED, -zlib.MAX_WBITS) if gzip else None

    def _finish_header(self) -> None:
        if not self._header_done:
            self.handle.write(GZIP_HEADER_TAIL)
            self._header_done = True

    def write(self, chunk: bytes) -> int:
        if not self.gzip:
            self.handle.write(chunk)
            return len(chunk)

        self._finish_header()
        self._crc = zlib.crc32(chunk, self._crc)
        self._size += len(chunk)
        self.handle.write(self._compressor.compress(chunk))
        return len(chunk)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True

        try:
            if self.gzip:
                self._finish_header()
                self.handle.write(self._compressor.flush())
                self.handle.write(struct.pack("<II", self._crc & 0xFFFFFFFF, self._size & 0xFFFFFFFF))
        finally:
            self.handle.close()
