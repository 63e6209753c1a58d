"""Per-message deflate streams for WebSocket compression."""

from __future__ import annotations

import zlib
from enum import IntEnum

_COMPRESSOR_MASK = 0x00FF
_DECOMPRESSOR_MASK = 0x0F00

# Every sync-flushed deflate block ends with these bytes; they are stripped
# from outgoing messages and restored before inflating.
_SYNC_TAIL = b"\x00\x00\xff\xff"


class CompressOptions(IntEnum):
    """Compression settings packed into 16 bits.

    The low byte describes the compressor (window bits in the high nibble,
    memory level in the low nibble); bits 8-11 give the decompressor's
    window bits. A value of 1 in either part means shared.
    """

    DISABLED = 0
    SHARED_COMPRESSOR = 1
    SHARED_DECOMPRESSOR = 1 << 8

    DEDICATED_DECOMPRESSOR_32KB = 15 << 8
    DEDICATED_DECOMPRESSOR_16KB = 14 << 8
    DEDICATED_DECOMPRESSOR_8KB = 13 << 8
    DEDICATED_DECOMPRESSOR_4KB = 12 << 8
    DEDICATED_DECOMPRESSOR_2KB = 11 << 8
    DEDICATED_DECOMPRESSOR_1KB = 10 << 8
    DEDICATED_DECOMPRESSOR_512B = 9 << 8
    DEDICATED_DECOMPRESSOR = 15 << 8

    DEDICATED_COMPRESSOR_3KB = 9 << 4 | 1
    DEDICATED_COMPRESSOR_4KB = 9 << 4 | 2
    DEDICATED_COMPRESSOR_8KB = 10 << 4 | 3
    DEDICATED_COMPRESSOR_16KB = 11 << 4 | 4
    DEDICATED_COMPRESSOR_32KB = 12 << 4 | 5
    DEDICATED_COMPRESSOR_64KB = 13 << 4 | 6
    DEDICATED_COMPRESSOR_128KB = 14 << 4 | 7
    DEDICATED_COMPRESSOR_256KB = 15 << 4 | 8
    DEDICATED_COMPRESSOR = 15 << 4 | 8


class DeflationStream:
    """Raw deflate stream producing permessage-deflate payloads."""

    def __init__(self, compress_options: int) -> None:
        options = int(compress_options)
        self._window_bits = -((options & _COMPRESSOR_MASK) >> 4)
        self._mem_level = options & 0xF
        self._compressor = self._new_compressor()

    def _new_compressor(self):
        try:
            return zlib.compressobj(
                zlib.Z_DEFAULT_COMPRESSION,
                zlib.DEFLATED,
                self._window_bits,
                self._mem_level,
                zlib.Z_DEFAULT_STRATEGY,
            )
        except (ValueError, zlib.error) as exc:
            raise ValueError(
                f"invalid compressor settings: window bits {-self._window_bits}, "
                f"memory level {self._mem_level}"
            ) from exc

    def deflate(self, raw: bytes, reset: bool) -> bytes:
        """Compress one message and optionally drop the sliding window."""
        data = bytes(raw)
        if not data:
            raise ValueError("cannot deflate an empty message")
        out = self._compressor.compress(data) + self._compressor.flush(zlib.Z_SYNC_FLUSH)
        if reset:
            self._compressor = self._new_compressor()
        return out[: -len(_SYNC_TAIL)]


class InflationStream:
    """Raw inflate stream for permessage-deflate payloads."""

    def __init__(self, compress_options: int) -> None:
        self._window_bits = -(int(compress_options) >> 8)
        self._decompressor = self._new_decompressor()

    def _new_decompressor(self):
        try:
            return zlib.decompressobj(self._window_bits)
        except (ValueError, zlib.error) as exc:
            raise ValueError(
                f"invalid decompressor window bits {-self._window_bits}"
            ) from exc

    def inflate(self, compressed: bytes, max_payload_length: int, reset: bool) -> bytes | None:
        """Decompress one message.

        Returns None when the data is corrupt, ends the deflate stream, or
        inflates to more than ``max_payload_length`` bytes. Empty input is
        valid and inflates to nothing.
        """
        data = bytes(compressed) + _SYNC_TAIL
        try:
            out = self._decompressor.decompress(data, max_payload_length + 1)
            failed = self._decompressor.eof
        except zlib.error:
            out, failed = b"", True
        if reset:
            self._decompressor = self._new_decompressor()
        if failed or len(out) > max_payload_length:
            return None
        return out