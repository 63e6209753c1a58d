"""HTTP/1.1 connection events: request dispatch, body streaming, timeouts."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import IntFlag
from typing import Any

from wskit.websocket import WebSocketConnection

HTTP_IDLE_TIMEOUT_S = 10
HTTP_RECEIVE_THROUGHPUT_BYTES = 16 * 1024

_CONTINUE = b"HTTP/1.1 100 Continue\r\n\r\n"


class ResponseState(IntFlag):
    """Flags describing the response in progress on a connection."""

    NONE = 0
    RESPONSE_PENDING = 1
    CONNECTION_CLOSE = 2


@dataclass
class HttpResponseData:
    """Per-connection response state and user callbacks."""

    on_aborted: Callable[[], None] | None = None
    in_stream: Callable[[bytes, bool], None] | None = None
    on_writable: Callable[[int], bool] | None = None
    state: ResponseState = ResponseState.NONE
    offset: int = 0
    header_offset: int = 0
    received_bytes_per_timeout: int = 0


Router = Callable[["HttpConnection", Any], bool]
FilterHandler = Callable[["HttpConnection", int], None]


def _header(request: Any, name: str) -> str:
    headers = getattr(request, "headers", None) or {}
    if isinstance(headers, Mapping):
        items = headers.items()
    else:
        items = headers
    for key, value in items:
        if key.lower() == name:
            return value
    return ""


class HttpConnection:
    """One HTTP connection: transport state plus the response being written.

    ``transport`` is called with outgoing bytes and returns how many it
    accepted; the rest is kept as backpressure. Without a transport all data
    is accepted and collected in ``written``.
    """

    def __init__(
        self,
        context: HttpContext,
        transport: Callable[[bytes], int] | None = None,
    ) -> None:
        self.context = context
        self._transport = transport
        self.data = HttpResponseData()
        self.written = bytearray()
        self.backpressure = bytearray()
        self._cork_buffer = bytearray()
        self.corked = False
        self.closed = False
        self.shut_down = False
        self.idle_timeout = 0
        self.user_data: Any = None
        self._stopped = False

    @property
    def buffered_amount(self) -> int:
        """Bytes waiting to be written."""
        return len(self.backpressure)

    @property
    def has_responded(self) -> bool:
        """True when no response is pending."""
        return not self.data.state & ResponseState.RESPONSE_PENDING

    def _send(self, data: bytes) -> int:
        if self.closed or self.shut_down:
            return 0
        if self.corked:
            self._cork_buffer.extend(data)
            return len(data)
        pending = bytes(self.backpressure) + bytes(data)
        if not pending:
            return 0
        if self._transport is None:
            self.written.extend(pending)
            accepted = len(pending)
        else:
            accepted = max(0, min(len(pending), self._transport(pending)))
        self.backpressure = bytearray(pending[accepted:])
        return accepted

    def cork(self) -> None:
        """Collect writes in memory until :meth:`uncork`."""
        self.corked = True

    def uncork(self) -> tuple[int, bool]:
        """Flush corked writes; return bytes written and whether any remain."""
        if not self.corked:
            return 0, False
        self.corked = False
        pending = bytes(self._cork_buffer)
        self._cork_buffer.clear()
        if self.closed or self.shut_down:
            return 0, False
        written = self._send(pending) if pending or self.backpressure else 0
        return written, self.buffered_amount > 0

    def timeout(self, seconds: int) -> None:
        """Arm the idle timer; 0 disables it."""
        self.idle_timeout = seconds

    def shutdown(self) -> None:
        """Half-close the transport for writing."""
        if not self.closed:
            self.shut_down = True

    def close(self) -> None:
        """Close the transport at once and emit the close event."""
        if self.closed:
            return
        self.closed = True
        self._cork_buffer.clear()
        self.context.on_close(self)

    def on_aborted(self, handler: Callable[[], None]) -> HttpConnection:
        """Register a handler called if the connection dies before responding."""
        self.data.on_aborted = handler
        return self

    def on_data(self, handler: Callable[[bytes, bool], None]) -> HttpConnection:
        """Register a handler receiving request body chunks."""
        self.data.in_stream = handler
        return self

    def on_writable(self, handler: Callable[[int], bool]) -> HttpConnection:
        """Register a handler called with the write offset when writable."""
        self.data.on_writable = handler
        return self

    def write_continue(self) -> None:
        """Send an interim 100 Continue response."""
        self._send(_CONTINUE)

    def write(self, data: bytes | str) -> bool:
        """Write part of the response; return True if nothing is left buffered."""
        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self.data.offset += len(raw)
        self._send(raw)
        return self.buffered_amount == 0

    def end(self, data: bytes | str = b"") -> bool:
        """Write the rest of the response and mark it finished."""
        if self.has_responded:
            raise RuntimeError("no response is pending on this connection")
        done = self.write(data)
        response = self.data
        response.state &= ~ResponseState.RESPONSE_PENDING
        response.on_aborted = None
        response.in_stream = None
        response.on_writable = None
        if not self.corked:
            if done:
                self.context._close_if_done(self)
            else:
                self.timeout(HTTP_IDLE_TIMEOUT_S)
        return done

    def upgrade(self, websocket: WebSocketConnection) -> None:
        """Hand this connection over to a WebSocket connection."""
        pending = bytes(self._cork_buffer) + bytes(self.backpressure)
        self._cork_buffer.clear()
        self.backpressure.clear()
        self.corked = False
        if pending:
            websocket.write(pending)
        self.closed = True
        self.data = HttpResponseData()
        self.context.upgraded_websocket = websocket


class HttpContext:
    """Dispatches connection events to routes and user callbacks.

    ``router`` is called with the connection and the request; it returns
    whether a handler took the request. Requests expose ``method``, ``url``,
    ``headers`` (name to value) and optionally ``ancient`` for HTTP/1.0.
    """

    def __init__(self, router: Router | None = None) -> None:
        self.router = router
        self.filter_handlers: list[FilterHandler] = []
        self.is_parsing_http = False
        self.upgraded_websocket: WebSocketConnection | None = None

    def filter(self, handler: FilterHandler) -> None:
        """Register a handler called with 1 on open and -1 on close."""
        self.filter_handlers.append(handler)

    def on_open(self, connection: HttpConnection) -> None:
        """A connection opened; it must send a request within the idle timeout."""
        connection.timeout(HTTP_IDLE_TIMEOUT_S)
        connection.data = HttpResponseData()
        for handler in self.filter_handlers:
            handler(connection, 1)

    def on_close(self, connection: HttpConnection) -> None:
        """A connection closed; signal any pending request as aborted."""
        for handler in self.filter_handlers:
            handler(connection, -1)
        aborted = connection.data.on_aborted
        if aborted is not None:
            aborted()
        connection.data = HttpResponseData()

    def _begin(self, connection: HttpConnection) -> bool:
        if connection.closed or connection.shut_down or connection._stopped:
            return False
        if not connection.corked:
            connection.cork()
        self.is_parsing_http = True
        return True

    @staticmethod
    def _stop(connection: HttpConnection) -> bool:
        connection._stopped = True
        return False

    def handle_request(self, connection: HttpConnection, request: Any) -> bool:
        """Dispatch a parsed request; return False when parsing must stop.

        Raises RuntimeError if the handler neither responded nor attached an
        abort handler.
        """
        if not self._begin(connection):
            return False
        connection.timeout(0)
        response = connection.data
        response.offset = 0

        if response.state & ResponseState.RESPONSE_PENDING:
            connection.close()
            return self._stop(connection)

        response.state = ResponseState.RESPONSE_PENDING
        if getattr(request, "ancient", False) or len(_header(request, "connection")) == 5:
            response.state |= ResponseState.CONNECTION_CLOSE

        if _header(request, "expect") == "100-continue":
            connection.write_continue()

        if self.router is None or not self.router(connection, request):
            connection.close()
            return self._stop(connection)

        if self.upgraded_websocket is not None:
            return self._stop(connection)
        if connection.closed or connection.shut_down:
            return self._stop(connection)

        response = connection.data
        if not connection.has_responded and response.on_aborted is None:
            raise RuntimeError(
                "returning from a request handler without responding or "
                "attaching an abort handler is forbidden"
            )
        if not connection.has_responded and response.in_stream is not None:
            connection.timeout(HTTP_IDLE_TIMEOUT_S)
        return True

    def handle_body_chunk(self, connection: HttpConnection, data: bytes, fin: bool) -> bool:
        """Pass a body chunk to the data handler; return False to stop parsing."""
        if not self._begin(connection):
            return False
        response = connection.data
        stream = response.in_stream
        if stream is None:
            return True
        chunk = bytes(data)
        if fin:
            connection.timeout(0)
        else:
            response.received_bytes_per_timeout += len(chunk)
            limit = HTTP_RECEIVE_THROUGHPUT_BYTES * HTTP_IDLE_TIMEOUT_S
            if response.received_bytes_per_timeout >= limit:
                connection.timeout(HTTP_IDLE_TIMEOUT_S)
                response.received_bytes_per_timeout = 0
        stream(chunk, fin)
        if connection.closed or connection.shut_down:
            return self._stop(connection)
        if fin:
            connection.data.in_stream = None
        return True

    def _close_if_done(self, connection: HttpConnection) -> None:
        state = connection.data.state
        if (
            state & ResponseState.CONNECTION_CLOSE
            and not state & ResponseState.RESPONSE_PENDING
            and connection.buffered_amount == 0
        ):
            connection.shutdown()
            connection.close()

    def finish_parsing(
        self, connection: HttpConnection
    ) -> HttpConnection | WebSocketConnection:
        """End a round of parsing: flush output and return the live connection."""
        self.is_parsing_http = False
        stopped = connection._stopped
        connection._stopped = False

        if not stopped and not connection.closed:
            _, failed = connection.uncork()
            if failed:
                connection.timeout(HTTP_IDLE_TIMEOUT_S)
            self._close_if_done(connection)
            return connection

        upgraded = self.upgraded_websocket
        if upgraded is not None:
            self.upgraded_websocket = None
            if upgraded.buffered_amount == 0 and upgraded.is_shutting_down:
                upgraded.shutdown()
            return upgraded

        connection.uncork()
        return connection

    def on_writable(self, connection: HttpConnection) -> None:
        """The transport can take more data."""
        response = connection.data
        if response.on_writable is not None:
            connection.timeout(0)
            response.on_writable(response.offset)
            return
        connection._send(b"")
        self._close_if_done(connection)
        connection.timeout(HTTP_IDLE_TIMEOUT_S)

    def on_end(self, connection: HttpConnection) -> None:
        """The peer half-closed; HTTP does not support that, so close."""
        connection.close()

    def on_timeout(self, connection: HttpConnection) -> None:
        """The idle timer expired; close without a graceful shutdown."""
        connection.close()