from dataclasses import dataclass, field

import pytest

from wskit.httpcontext import (
    HTTP_IDLE_TIMEOUT_S,
    HttpConnection,
    HttpContext,
    HttpResponseData,
    ResponseState,
)
from wskit.websocket import WebSocketConnection, WebSocketContext


@dataclass
class Request:
    method: str = "GET"
    url: str = "/"
    headers: dict = field(default_factory=dict)
    ancient: bool = False


class Sink:
    def __init__(self, limit=None):
        self.data = bytearray()
        self.limit = limit

    def __call__(self, chunk):
        n = len(chunk) if self.limit is None else min(self.limit, len(chunk))
        self.data.extend(chunk[:n])
        return n


def routed(handler):
    def router(connection, request):
        handler(connection, request)
        return True

    return router


def opened(context, transport=None):
    connection = HttpConnection(context, transport)
    context.on_open(connection)
    return connection


def test_open_and_close_call_filters_and_abort():
    events = []
    context = HttpContext()
    context.filter(lambda c, kind: events.append(kind))
    connection = opened(context)
    assert connection.idle_timeout == HTTP_IDLE_TIMEOUT_S
    connection.on_aborted(lambda: events.append("aborted"))
    connection.close()
    assert events == [1, -1, "aborted"]
    assert connection.closed


def test_request_is_answered():
    context = HttpContext(routed(lambda c, r: c.end(b"hello")))
    connection = opened(context)
    assert context.handle_request(connection, Request()) is True
    assert connection.written == b""
    assert context.finish_parsing(connection) is connection
    assert connection.written == b"hello"
    assert connection.has_responded
    assert connection.idle_timeout == 0
    assert not connection.closed


def test_unrouted_request_closes():
    context = HttpContext(lambda c, r: False)
    connection = opened(context)
    assert context.handle_request(connection, Request()) is False
    assert connection.closed
    assert context.handle_request(connection, Request()) is False


def test_pending_request_rejects_pipelined_one():
    context = HttpContext(routed(lambda c, r: c.on_aborted(lambda: None)))
    connection = opened(context)
    assert context.handle_request(connection, Request()) is True
    assert context.handle_request(connection, Request()) is False
    assert connection.closed


def test_keep_alive_serves_two_requests():
    context = HttpContext(routed(lambda c, r: c.end(r.url)))
    connection = opened(context)
    assert context.handle_request(connection, Request(url="/a"))
    assert context.handle_request(connection, Request(url="/b"))
    context.finish_parsing(connection)
    assert connection.written == b"/a/b"


@pytest.mark.parametrize(
    "request_",
    [Request(headers={"Connection": "close"}), Request(ancient=True)],
)
def test_connection_close_after_response(request_):
    context = HttpContext(routed(lambda c, r: c.end(b"bye")))
    connection = opened(context)
    assert context.handle_request(connection, request_)
    assert connection.data.state & ResponseState.CONNECTION_CLOSE
    context.finish_parsing(connection)
    assert connection.written == b"bye"
    assert connection.shut_down
    assert connection.closed


def test_unanswered_request_without_abort_handler_raises():
    context = HttpContext(routed(lambda c, r: None))
    connection = opened(context)
    with pytest.raises(RuntimeError):
        context.handle_request(connection, Request())


def test_expect_continue_is_answered_first():
    context = HttpContext(routed(lambda c, r: c.end(b"ok")))
    connection = opened(context)
    context.handle_request(connection, Request(headers={"expect": "100-continue"}))
    context.finish_parsing(connection)
    assert connection.written == b"HTTP/1.1 100 Continue\r\n\r\nok"


def test_body_streaming():
    chunks = []

    def handler(connection, request):
        connection.on_aborted(lambda: None)
        connection.on_data(lambda chunk, fin: chunks.append((chunk, fin)))

    context = HttpContext(routed(handler))
    connection = opened(context)
    assert context.handle_request(connection, Request(method="POST"))
    assert connection.idle_timeout == HTTP_IDLE_TIMEOUT_S
    assert context.handle_body_chunk(connection, b"abc", False)
    assert context.handle_body_chunk(connection, b"def", True)
    assert chunks == [(b"abc", False), (b"def", True)]
    assert connection.idle_timeout == 0
    assert connection.data.in_stream is None


def test_receive_throughput_rearms_timeout():
    def handler(connection, request):
        connection.on_aborted(lambda: None)
        connection.on_data(lambda chunk, fin: None)

    context = HttpContext(routed(handler))
    connection = opened(context)
    context.handle_request(connection, Request(method="POST"))
    connection.timeout(0)
    context.handle_body_chunk(connection, bytes(100000), False)
    assert connection.data.received_bytes_per_timeout == 100000
    assert connection.idle_timeout == 0
    context.handle_body_chunk(connection, bytes(100000), False)
    assert connection.data.received_bytes_per_timeout == 0
    assert connection.idle_timeout == HTTP_IDLE_TIMEOUT_S


def test_closing_in_data_handler_stops_parsing():
    def handler(connection, request):
        connection.on_aborted(lambda: None)
        connection.on_data(lambda chunk, fin: connection.close())

    context = HttpContext(routed(handler))
    connection = opened(context)
    context.handle_request(connection, Request(method="POST"))
    assert context.handle_body_chunk(connection, b"x", False) is False
    assert connection.closed


def test_backpressure_drains_on_writable():
    sink = Sink(limit=3)
    context = HttpContext(routed(lambda c, r: c.end(b"hello world")))
    connection = opened(context, sink)
    context.handle_request(connection, Request())
    connection.timeout(0)
    context.finish_parsing(connection)
    assert sink.data == b"hel"
    assert connection.buffered_amount == len(b"hello world") - 3
    assert connection.idle_timeout == HTTP_IDLE_TIMEOUT_S
    sink.limit = None
    connection.timeout(0)
    context.on_writable(connection)
    assert sink.data == b"hello world"
    assert connection.buffered_amount == 0
    assert connection.idle_timeout == HTTP_IDLE_TIMEOUT_S


def test_on_writable_handler_receives_offset():
    offsets = []

    def handler(connection, request):
        connection.write(b"12345")
        connection.on_aborted(lambda: None)
        connection.on_writable(lambda offset: offsets.append(offset) or True)

    context = HttpContext(routed(handler))
    connection = opened(context)
    context.handle_request(connection, Request())
    context.finish_parsing(connection)
    connection.timeout(7)
    context.on_writable(connection)
    assert offsets == [5]
    assert connection.idle_timeout == 0


@pytest.mark.parametrize("event", ["on_end", "on_timeout"])
def test_end_and_timeout_close(event):
    aborted = []
    context = HttpContext(routed(lambda c, r: c.on_aborted(lambda: aborted.append(True))))
    connection = opened(context)
    context.handle_request(connection, Request())
    getattr(context, event)(connection)
    assert connection.closed
    assert aborted == [True]
    assert isinstance(connection.data, HttpResponseData)
    assert connection.data.on_aborted is None


def test_shut_down_connection_accepts_no_requests():
    calls = []
    context = HttpContext(routed(lambda c, r: calls.append(r)))
    connection = opened(context)
    connection.shutdown()
    assert context.handle_request(connection, Request()) is False
    assert calls == []


def test_upgrade_returns_websocket():
    ws_context = WebSocketContext()
    holder = {}

    def handler(connection, request):
        connection.write(b"101")
        websocket = WebSocketConnection(ws_context)
        holder["ws"] = websocket
        connection.upgrade(websocket)

    context = HttpContext(routed(handler))
    connection = opened(context)
    assert context.handle_request(connection, Request()) is False
    result = context.finish_parsing(connection)
    assert result is holder["ws"]
    assert result.written == b"101"
    assert context.upgraded_websocket is None


def test_end_twice_raises():
    context = HttpContext(routed(lambda c, r: c.end(b"a")))
    connection = opened(context)
    context.handle_request(connection, Request())
    with pytest.raises(RuntimeError):
        connection.end(b"b")