# wskit

Building blocks for HTTP and WebSocket servers, written in pure Python with
no dependencies outside the standard library.

## Modules

- `wskit.compression`: `CompressOptions`, `DeflationStream` and
  `InflationStream`. These are raw-deflate streams for permessage-deflate.
  `deflate` removes the trailing `00 00 ff ff` of the sync flush, and
  `inflate` puts it back. `inflate` returns `None` when the data is corrupt
  or when it inflates to more than the limit.
- `wskit.websocket`: `WebSocketContext`, `WebSocketBehavior`,
  `WebSocketConnection`, `OpCode`, `CompressionStatus`, `CloseFrame` and
  `parse_close_payload`.
  - The context reassembles fragmented messages, inflates compressed frames
    and rejects invalid UTF-8 text.
  - It answers pings with pongs and handles close frames.
  - It sends one automatic ping on timeout, and closes the connection the
    second time the timeout fires.
- `wskit.httpcontext`: `HttpContext`, `HttpConnection`, `HttpResponseData`
  and `ResponseState`.
  - These cover what happens on an HTTP connection over its life: the idle
    timeout, pending responses, `Connection: close` and HTTP/1.0 requests,
    and `Expect: 100-continue`.
  - They also stream request bodies, with a minimum throughput.
  - Filters are called with `1` when a connection opens and `-1` when it
    closes.
  - A connection can be handed over to a `WebSocketConnection`.
- `wskit.loop`: `Loop` and `run`. `Loop` is an event loop for each thread and
  is created on first use.
  - Callbacks queued with `defer` are safe to queue from any thread.
  - Pre-iteration and post-iteration handlers are keyed; if a key is added
    twice, the first handler stays.
  - `run()` returns once there is nothing left to do.
- `wskit.filereader`: `AsyncFileReader` and `FileStreamer`.
  - `AsyncFileReader` keeps one chunk of a file in a cache. It reads the next
    chunk on a worker thread and delivers it on the loop.
  - `FileStreamer` maps every file below a root directory to a URL.
    `/index.html` is served as `/`.
- `wskit.optparse`: `OptParser`, `LongOption`, `ArgType` and `OptionError`.
  This is a reentrant option parser in the style of getopt. It also handles
  GNU-style long options and moves non-option arguments to the end.
- Small helpers:
  - `wskit.bloomfilter.BloomFilter` is a 256-bit Bloom filter for header names.
  - `wskit.utilities` has `u32_to_hex`, `u64_to_dec` and `has_ext`.
  - `wskit.chunking.make_chunked` splits bytes into chunks, each preceded by a
    length byte.

## Installation

```
pip install wskit
```

To run the tests:

```
pip install "wskit[test]"
pytest
```

## Examples

Compress a message and inflate it again:

```python
from wskit.compression import CompressOptions, DeflationStream, InflationStream

deflater = DeflationStream(CompressOptions.DEDICATED_COMPRESSOR_4KB)
inflater = InflationStream(CompressOptions.DEDICATED_DECOMPRESSOR)

packed = deflater.deflate(b"hello hello hello", True)
assert inflater.inflate(packed, 1024, True) == b"hello hello hello"
```

Echo a WebSocket text message:

```python
from wskit.websocket import OpCode, WebSocketBehavior, WebSocketConnection, WebSocketContext

context = WebSocketContext(WebSocketBehavior(message=lambda ws, msg, op: ws.send(msg, op)))
connection = WebSocketConnection(context)

context.handle_fragment(connection, b"hi", 0, OpCode.TEXT, True)
assert bytes(connection.written) == b"\x81\x02hi"
```

Read a close payload:

```python
from wskit.websocket import parse_close_payload

frame = parse_close_payload(b"\x03\xe8bye")
assert (frame.code, frame.message) == (1000, b"bye")
```

Run a deferred callback on the loop of the current thread:

```python
from wskit.loop import Loop

loop = Loop.get()
loop.defer(lambda: print("deferred"))
loop.run()
```

Parse command-line options:

```python
from wskit.optparse import OptParser

parser = OptParser(["prog", "-p", "9001", "-v"])
assert parser.next("p:v") == "p" and parser.optarg == "9001"
assert parser.next("p:v") == "v"
assert parser.next("p:v") is None
```

Parsing errors raise `OptionError`. Its `errmsg` reads, for example,
`invalid option -- 'x'`.

## What the package does not do

wskit does not open sockets, listen on ports, or parse HTTP requests or
WebSocket frame headers.

- Connections write through a `transport` callable that you supply. If you
  supply none, what they write is collected in `written`.
- Events are driven by calling the context methods, such as `on_open`,
  `handle_request`, `handle_body_chunk`, `handle_fragment` and `on_timeout`.
- Routing is a callable `router(connection, request)` that you supply. It
  returns whether a handler took the request.
- `HttpConnection.write` and `end` send the bytes they are given as they are.
  Status lines and headers are not formatted for you.

There is no command-line program.