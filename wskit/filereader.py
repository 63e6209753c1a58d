"""Cached, asynchronous file reading for streaming files to clients."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from pathlib import Path

from wskit.loop import Loop

CACHE_SIZE = 1024 * 1024


class AsyncFileReader:
    """Reads a file in cache-sized chunks on a worker thread.

    Completed reads are delivered on the loop's thread. Only one request
    may be pending at a time.
    """

    def __init__(
        self,
        file_name: str | os.PathLike[str],
        loop: Loop | None = None,
        cache_size: int = CACHE_SIZE,
    ) -> None:
        if cache_size <= 0:
            raise ValueError("cache size must be positive")
        self.file_name = os.fspath(file_name)
        self.file_size = os.path.getsize(self.file_name)
        self._cache_size = cache_size
        self._loop = loop if loop is not None else Loop.get()
        with open(self.file_name, "rb") as handle:
            self._cache = handle.read(cache_size)
        self._cache_offset = 0
        self._has_cache = True
        self._cancelled: threading.Event | None = None

    def peek(self, offset: int) -> bytes:
        """Return data already cached at ``offset``, or b"" on a miss."""
        if not self._has_cache:
            return b""
        relative = offset - self._cache_offset
        if not 0 <= relative < self._cache_size:
            return b""
        chunk = min(self.file_size - offset, self._cache_size - relative)
        if chunk <= 0:
            return b""
        return self._cache[relative : relative + chunk]

    def request(self, offset: int, callback: Callable[[bytes], None]) -> None:
        """Read a chunk at ``offset`` and pass it to ``callback`` on the loop.

        An empty chunk means the read failed. Raises RuntimeError while a
        request is already pending.
        """
        if not self._has_cache:
            raise RuntimeError("a chunk is already being requested")
        self._has_cache = False
        cancelled = threading.Event()
        self._cancelled = cancelled
        loop = self._loop
        loop._ref()

        def deliver(data: bytes) -> None:
            self._cache = data
            self._cache_offset = offset
            self._has_cache = True
            if self._cancelled is cancelled:
                self._cancelled = None
            loop._unref()
            if cancelled.is_set():
                return
            chunk = max(0, min(self._cache_size, self.file_size - offset))
            callback(data[:chunk])

        def work() -> None:
            try:
                with open(self.file_name, "rb") as handle:
                    handle.seek(offset)
                    data = handle.read(self._cache_size)
            except OSError:
                data = b""
            try:
                loop.defer(lambda: deliver(data))
            except RuntimeError:
                pass

        threading.Thread(target=work, daemon=True).start()

    def abort(self) -> None:
        """Cancel the pending request so its callback is never called."""
        if self._cancelled is not None:
            self._cancelled.set()


class FileStreamer:
    """Maps URLs under a root directory to file readers."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        loop: Loop | None = None,
        cache_size: int = CACHE_SIZE,
    ) -> None:
        self.root = Path(root)
        self._loop = loop
        self._cache_size = cache_size
        self.readers: dict[str, AsyncFileReader] = {}
        self.update_root_cache()

    def update_root_cache(self) -> None:
        """Create a reader for every file below the root directory."""
        for path in sorted(self.root.rglob("*")):
            if not path.is_file():
                continue
            url = "/" + path.relative_to(self.root).as_posix()
            if url == "/index.html":
                url = "/"
            self.readers[url] = AsyncFileReader(
                path, loop=self._loop, cache_size=self._cache_size
            )

    def reader_for(self, url: str) -> AsyncFileReader:
        """Return the reader serving ``url``; raises FileNotFoundError if none."""
        try:
            return self.readers[url]
        except KeyError:
            raise FileNotFoundError(f"did not find file: {url}") from None