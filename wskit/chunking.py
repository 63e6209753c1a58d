"""Split a byte string into length-prefixed chunks."""

from __future__ import annotations

from collections.abc import Iterator


def make_chunked(data: bytes) -> Iterator[bytes]:
    """Yield the chunks encoded in ``data``.

    Each chunk is preceded by one length byte: 1-255 gives the chunk size
    (cut short at the end of the data), 0 means everything that remains.
    """
    view = memoryview(bytes(data))
    position = 0
    while position < len(view):
        size = view[position]
        position += 1
        remaining = len(view) - position
        size = remaining if size == 0 else min(size, remaining)
        yield view[position : position + size].tobytes()
        position += size