"""A lazily created, per-thread event loop with deferred callbacks."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from email.utils import formatdate

Handler = Callable[["Loop"], None]

_local = threading.local()


class Loop:
    """Event loop owned by one thread.

    Each iteration runs the pre handlers, drains the callbacks queued with
    :meth:`defer` and then runs the post handlers. :meth:`run` returns once
    no deferred callbacks are pending and no outstanding work holds the
    loop open.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._defer_queue: list[Callable[[], None]] = []
        self._pre_handlers: dict[Hashable, Handler] = {}
        self._post_handlers: dict[Hashable, Handler] = {}
        self._refs = 0
        self._freed = False
        self._date_stamp = 0.0
        self.date = ""
        self.silent = False
        self._update_date()

    @classmethod
    def get(cls) -> Loop:
        """Return this thread's loop, creating it on first use."""
        loop = getattr(_local, "loop", None)
        if loop is None:
            loop = cls()
            _local.loop = loop
        return loop

    def free(self) -> None:
        """Release the loop; the next :meth:`get` on this thread makes a new one."""
        with self._cond:
            self._freed = True
            self._defer_queue.clear()
            self._pre_handlers.clear()
            self._post_handlers.clear()
            self._refs = 0
            self._cond.notify_all()
        if getattr(_local, "loop", None) is self:
            _local.loop = None

    def add_post_handler(self, key: Hashable, handler: Handler) -> None:
        """Register a handler run after each iteration; an existing key is kept."""
        self._post_handlers.setdefault(key, handler)

    def remove_post_handler(self, key: Hashable) -> None:
        """Remove the post handler registered under ``key``, if any."""
        self._post_handlers.pop(key, None)

    def add_pre_handler(self, key: Hashable, handler: Handler) -> None:
        """Register a handler run before each iteration; an existing key is kept."""
        self._pre_handlers.setdefault(key, handler)

    def remove_pre_handler(self, key: Hashable) -> None:
        """Remove the pre handler registered under ``key``, if any."""
        self._pre_handlers.pop(key, None)

    def defer(self, callback: Callable[[], None]) -> None:
        """Queue a callback to run on the loop's thread; safe from any thread."""
        with self._cond:
            if self._freed:
                raise RuntimeError("loop has been freed")
            self._defer_queue.append(callback)
            self._cond.notify_all()

    def set_silent(self, silent: bool) -> None:
        """Set whether the loop stays silent."""
        self.silent = bool(silent)

    def run(self) -> None:
        """Block and run iterations until there is nothing left to do."""
        if self._freed:
            raise RuntimeError("loop has been freed")
        while True:
            with self._cond:
                while not self._defer_queue and self._refs > 0 and not self._freed:
                    self._cond.wait()
                if self._freed or (not self._defer_queue and self._refs == 0):
                    return
            self._iterate()

    def _ref(self) -> None:
        """Keep the loop running until a matching :meth:`_unref`."""
        with self._cond:
            self._refs += 1

    def _unref(self) -> None:
        with self._cond:
            self._refs = max(0, self._refs - 1)
            self._cond.notify_all()

    def _iterate(self) -> None:
        for handler in list(self._pre_handlers.values()):
            handler(self)
        with self._cond:
            pending, self._defer_queue = self._defer_queue, []
        for callback in pending:
            callback()
        self._update_date()
        for handler in list(self._post_handlers.values()):
            handler(self)

    def _update_date(self) -> None:
        now = time.time()
        if not self.date or now - self._date_stamp >= 1.0:
            self._date_stamp = now
            self.date = formatdate(now, usegmt=True)


def run() -> None:
    """Run the calling thread's loop."""
    Loop.get().run()